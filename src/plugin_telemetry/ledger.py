"""Bookkeeping for one-shot lifecycle events and KUI counters.

A one-shot event (``setup``, ``first_strike``) is marked as fired when it is
attempted, not when the backend confirms receipt. Retrying the row that is
already queued is fine; enqueuing a second ``setup`` row is not.

KUI counters count occurrences of a key usage indicator. Once a counter
reaches its threshold the bound event fires, and the counter is only reset
after that event has actually been delivered. The queue row of the bound
event is remembered as pending until then, so a crossing fires exactly one
event.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from .config import ConfigurationError
from .settings import SettingsStore

FIRED = "yes"


class OneShotLedger:
    """Persisted flags and counters for derived/singleton events."""

    def __init__(
        self,
        settings: SettingsStore,
        prefix: str,
        thresholds: Optional[Mapping[str, int]] = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            settings: Store holding the flags and counters.
            prefix: Key prefix, usually the plugin slug.
            thresholds: Initial KUI thresholds by KUI name.
        """
        self._settings = settings
        self._prefix = prefix
        self._thresholds: Dict[str, int] = {}
        for name, threshold in (thresholds or {}).items():
            self.configure(name, threshold)

    def _fired_key(self, event_name: str) -> str:
        return f"{self._prefix}_event_sent_{event_name}"

    def _count_key(self, kui_name: str) -> str:
        return f"{self._prefix}_kui_count_{kui_name}"

    def _pending_key(self, kui_name: str) -> str:
        return f"{self._prefix}_kui_pending_{kui_name}"

    # One-shot events

    def has_fired(self, event_name: str) -> bool:
        return self._settings.get(self._fired_key(event_name), "no") == FIRED

    def mark_fired(self, event_name: str) -> None:
        if not self.has_fired(event_name):
            self._settings.set(self._fired_key(event_name), FIRED)

    # KUI counters

    def configure(self, kui_name: str, threshold: int) -> None:
        """Set the threshold at which ``kui_name`` fires its bound event."""
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
            raise ConfigurationError(
                f"KUI threshold for {kui_name!r} must be a positive integer, got {threshold!r}"
            )
        self._thresholds[kui_name] = threshold

    def threshold(self, kui_name: str) -> Optional[int]:
        return self._thresholds.get(kui_name)

    def is_configured(self, kui_name: str) -> bool:
        return kui_name in self._thresholds

    def count(self, kui_name: str) -> int:
        try:
            return int(self._settings.get(self._count_key(kui_name), 0))
        except (TypeError, ValueError):
            return 0

    def increment(self, kui_name: str) -> int:
        new_count = self.count(kui_name) + 1
        self._settings.set(self._count_key(kui_name), new_count)
        return new_count

    def threshold_reached(self, kui_name: str) -> bool:
        threshold = self._thresholds.get(kui_name)
        if threshold is None:
            return False
        return self.count(kui_name) >= threshold

    def reset(self, kui_name: str) -> None:
        self._settings.set(self._count_key(kui_name), 0)

    # Bound KUI events awaiting delivery

    def pending_row(self, kui_name: str) -> Optional[int]:
        """Queue row id of the bound event not yet delivered, if any."""
        value = self._settings.get(self._pending_key(kui_name))
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def mark_pending(self, kui_name: str, row_id: int) -> None:
        self._settings.set(self._pending_key(kui_name), row_id)

    def clear_pending(self, kui_name: Optional[str] = None) -> None:
        """Forget the pending row of ``kui_name``, or of every configured KUI."""
        names = [kui_name] if kui_name is not None else list(self._thresholds)
        for name in names:
            self._settings.delete(self._pending_key(name))

    def settle(self, kui_name: str, row_id: int) -> bool:
        """Reset the counter if ``row_id`` is the pending bound event.

        Returns:
            True if the counter was reset.
        """
        if self.pending_row(kui_name) != row_id:
            return False
        self.reset(kui_name)
        self.clear_pending(kui_name)
        return True
