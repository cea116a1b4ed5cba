"""Delivery adapters for plugin telemetry.

An adapter performs the network call for exactly one event. Adapters never
raise on delivery problems; they report them through DeliveryResult so the
dispatcher can keep the event queued for the next flush.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import httpx
import sentry_sdk

from .config import DEFAULT_ENDPOINT, ConfigurationError
from .privacy import create_before_send_filter

logger = logging.getLogger(__name__)

USER_AGENT_PRODUCT = "plugin-telemetry"
USER_AGENT_VERSION = "0.1.0"


@dataclass(frozen=True)
class Credentials:
    """Credentials for the analytics backend."""

    api_key: str
    api_secret: str = ""


@dataclass(frozen=True)
class ErrorDetail:
    """Why a delivery attempt failed."""

    message: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt."""

    success: bool
    error: Optional[ErrorDetail] = None

    @classmethod
    def ok(cls) -> "DeliveryResult":
        return cls(success=True)

    @classmethod
    def failed(cls, message: str, status_code: Optional[int] = None) -> "DeliveryResult":
        return cls(success=False, error=ErrorDetail(message, status_code))

    def __bool__(self) -> bool:
        return self.success


@runtime_checkable
class DeliveryAdapter(Protocol):
    """Boundary object performing the network call to the analytics backend."""

    def configure(self, credentials: Credentials) -> None: ...

    def send(self, event_name: str, properties: Mapping[str, Any]) -> DeliveryResult: ...


class OpenPanelAdapter:
    """Posts events as JSON over HTTPS to an OpenPanel track endpoint."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 5.0,
        host_name: str = "python",
        host_version: str = "unknown",
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            endpoint: URL of the track API.
            timeout: Per-request timeout in seconds. Kept short so a stalled
                endpoint cannot stall a flush tick.
            host_name: Host application name reported in the user agent.
            host_version: Host application version reported in the user agent.
            client: Optional preconfigured httpx client (e.g. with a mock
                transport).
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.host_name = host_name
        self.host_version = host_version
        self._client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=5,
        )
        self._credentials: Optional[Credentials] = None

    def configure(self, credentials: Credentials) -> None:
        """Set the client id/secret pair.

        Raises:
            ConfigurationError: If the API key is empty.
        """
        if not credentials.api_key:
            raise ConfigurationError("API key cannot be empty")
        self._credentials = credentials

    @property
    def user_agent(self) -> str:
        return (
            f"{USER_AGENT_PRODUCT}/{USER_AGENT_VERSION}; "
            f"{self.host_name}/{self.host_version}; "
            f"Python/{platform.python_version()}"
        )

    def _headers(self, credentials: Credentials) -> dict[str, str]:
        return {
            "openpanel-client-id": credentials.api_key,
            "openpanel-client-secret": credentials.api_secret,
            "Content-Type": "application/json",
            "user-agent": self.user_agent,
        }

    def send(self, event_name: str, properties: Mapping[str, Any]) -> DeliveryResult:
        if self._credentials is None:
            return DeliveryResult.failed("adapter is not configured")

        body = {
            "type": "track",
            "payload": {
                "name": event_name,
                "properties": dict(properties),
            },
        }

        try:
            response = self._client.post(
                self.endpoint,
                json=body,
                headers=self._headers(self._credentials),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            return DeliveryResult.failed(str(e) or type(e).__name__)

        if not 200 <= response.status_code < 300:
            return DeliveryResult.failed(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return DeliveryResult.ok()

    def close(self) -> None:
        self._client.close()


class SentryAdapter:
    """Delivers events to a Sentry/GlitchTip project through sentry-sdk.

    The DSN is taken from ``credentials.api_key``. Each event becomes an
    ``event:<name>`` message with its properties attached as extras, scrubbed
    by the privacy filter before they leave the process. sentry-sdk hands
    events to its own background transport, so success here means the SDK
    accepted the event.
    """

    def __init__(self, environment: str = "production", **sentry_kwargs: Any) -> None:
        self.environment = environment
        self._sentry_kwargs = sentry_kwargs
        self._initialized = False

    def configure(self, credentials: Credentials) -> None:
        if not credentials.api_key:
            raise ConfigurationError("Sentry DSN cannot be empty")

        sentry_kwargs = {
            "dsn": credentials.api_key,
            "environment": self.environment,
            "send_default_pii": False,
            "before_send": create_before_send_filter(),
        }
        sentry_kwargs.update(self._sentry_kwargs)

        sentry_sdk.init(**sentry_kwargs)
        self._initialized = True

    def send(self, event_name: str, properties: Mapping[str, Any]) -> DeliveryResult:
        if not self._initialized:
            return DeliveryResult.failed("adapter is not configured")

        with sentry_sdk.new_scope() as scope:
            for key, value in properties.items():
                scope.set_extra(key, value)
            event_id = sentry_sdk.capture_message(f"event:{event_name}", level="info")

        if event_id is None:
            return DeliveryResult.failed("event was dropped by sentry-sdk")
        return DeliveryResult.ok()

    def flush(self, timeout: float = 2.0) -> None:
        """Wait for the SDK transport to drain.

        Args:
            timeout: Maximum time to wait in seconds.
        """
        if self._initialized:
            sentry_sdk.flush(timeout=timeout)
