"""Opt-in consent gate.

Every transmission path asks the gate first. The answer comes from a single
persisted ``<slug>_allow_tracking`` flag that defaults to ``"no"``.
"""

from __future__ import annotations

import logging
from typing import Callable, List

from .settings import SettingsStore

logger = logging.getLogger(__name__)

ConsentListener = Callable[[bool], None]

ALLOWED = "yes"
DENIED = "no"


class ConsentGate:
    """Answers "may we transmit?" and reports opt-in/opt-out transitions."""

    def __init__(self, settings: SettingsStore, key: str, enabled: bool = True) -> None:
        """Initialize the gate.

        Args:
            settings: Store holding the consent flag.
            key: Settings key of the flag.
            enabled: False when the environment opted out (DO_NOT_TRACK);
                the gate then denies regardless of the stored flag.
        """
        self._settings = settings
        self._key = key
        self._enabled = enabled
        self._listeners: List[ConsentListener] = []

    @property
    def key(self) -> str:
        return self._key

    def is_allowed(self) -> bool:
        if not self._enabled:
            return False
        return self._settings.get(self._key, DENIED) == ALLOWED

    def subscribe(self, listener: ConsentListener) -> None:
        """Register a callback invoked with the new state on every transition."""
        self._listeners.append(listener)

    def grant(self) -> None:
        self._transition(True)

    def revoke(self) -> None:
        self._transition(False)

    def _transition(self, allowed: bool) -> None:
        stored = self._settings.get(self._key, DENIED) == ALLOWED
        self._settings.set(self._key, ALLOWED if allowed else DENIED, False)
        if stored == allowed:
            return

        logger.info("Telemetry consent %s (%s)", "granted" if allowed else "revoked", self._key)
        for listener in list(self._listeners):
            listener(allowed)
