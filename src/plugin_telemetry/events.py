"""Event names and payload enrichment for plugin telemetry.

Every event that leaves the client carries the same base properties so the
analytics backend can group events by installation, plugin and host.
"""

from __future__ import annotations

import platform
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from .config import TelemetryConfig
from .privacy import scrub_dict

KUI_PREFIX = "kui_"
IDENTIFY_KEY = "__identify"

Enricher = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class EventName(str, Enum):
    """Lifecycle events emitted by the client itself."""

    PLUGIN_ACTIVATED = "plugin_activated"
    PLUGIN_DEACTIVATED = "plugin_deactivated"
    SETUP = "setup"
    FIRST_STRIKE = "first_strike"


def kui_event_name(kui_name: str) -> str:
    """Event name bound to a key usage indicator."""
    return f"{KUI_PREFIX}{kui_name}"


def kui_name_from_event(event_name: str) -> Optional[str]:
    """Inverse of kui_event_name(); None for non-KUI events."""
    if event_name.startswith(KUI_PREFIX) and len(event_name) > len(KUI_PREFIX):
        return event_name[len(KUI_PREFIX):]
    return None


def generate_profile_id() -> str:
    """Generate a UUID4 suitable as an Identity profile id."""
    return str(uuid.uuid4())


@dataclass
class Identity:
    """Identification of the actor behind an event.

    Only ``profile_id`` is required. Leave the other fields empty unless the
    user agreed to be identified.
    """

    profile_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"profileId": self.profile_id}
        if self.email:
            data["email"] = self.email
        if self.first_name:
            data["firstName"] = self.first_name
        if self.last_name:
            data["lastName"] = self.last_name
        if self.properties:
            data["properties"] = dict(self.properties)
        return data


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayloadBuilder:
    """Builds the enriched property mapping attached to every event.

    Precedence, lowest first: automatic properties, ``extra_system_info``,
    caller-supplied properties, then the optional ``enrich`` callback.
    """

    def __init__(
        self,
        config: TelemetryConfig,
        unique_id: str,
        identity_provider: Optional[Callable[[], Optional[Identity]]] = None,
        enrich: Optional[Enricher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._unique_id = unique_id
        self._identity_provider = identity_provider
        self._enrich = enrich
        self._clock = clock

    def _identify(self) -> Dict[str, Any]:
        identity = self._identity_provider() if self._identity_provider else None
        if identity is None:
            return {"profileId": self._unique_id}
        return identity.to_dict()

    def build(self, event_name: str, properties: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Return the enriched properties for one event."""
        config = self._config
        payload: Dict[str, Any] = {
            "site_url": config.site_url,
            "unique_id": self._unique_id,
            "plugin_name": config.plugin_name,
            "plugin_version": config.plugin_version,
            "host_name": config.host_name,
            "host_version": config.host_version,
            "python_version": platform.python_version(),
            "os": platform.system(),
            "timestamp": self._clock().isoformat(),
            IDENTIFY_KEY: self._identify(),
        }
        payload.update(config.extra_system_info)

        if properties:
            caller = scrub_dict(properties) if config.scrub_pii else dict(properties)
            payload.update(caller)

        if self._enrich is not None:
            payload = self._enrich(event_name, payload)

        return payload
