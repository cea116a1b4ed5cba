"""Tests for delivery adapters."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from plugin_telemetry.adapters import (
    Credentials,
    DeliveryAdapter,
    OpenPanelAdapter,
    SentryAdapter,
)
from plugin_telemetry.config import DEFAULT_ENDPOINT, ConfigurationError


def make_adapter(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    adapter = OpenPanelAdapter(client=client, host_name="wordpress", host_version="6.5", **kwargs)
    adapter.configure(Credentials("op_key", "sec_key"))
    return adapter


class TestOpenPanelAdapter:
    """Tests for the HTTP adapter."""

    def test_satisfies_protocol(self):
        """The adapter should satisfy DeliveryAdapter."""
        assert isinstance(OpenPanelAdapter(), DeliveryAdapter)

    def test_configure_rejects_empty_key(self):
        """An empty API key is a configuration error."""
        with pytest.raises(ConfigurationError):
            OpenPanelAdapter().configure(Credentials(""))

    def test_unconfigured_send_fails(self):
        """Sending before configure() should fail without a request."""
        result = OpenPanelAdapter().send("event", {})
        assert not result.success

    def test_request_shape(self):
        """The request should carry the track body, credentials and user agent."""
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={})

        result = make_adapter(handler).send("plugin_activated", {"site_url": "https://x.test"})

        assert result.success
        request = seen["request"]
        assert request.method == "POST"
        assert str(request.url) == DEFAULT_ENDPOINT
        assert request.headers["openpanel-client-id"] == "op_key"
        assert request.headers["openpanel-client-secret"] == "sec_key"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["user-agent"].startswith("plugin-telemetry/")
        assert "wordpress/6.5" in request.headers["user-agent"]
        assert json.loads(request.content) == {
            "type": "track",
            "payload": {"name": "plugin_activated", "properties": {"site_url": "https://x.test"}},
        }

    def test_custom_endpoint(self):
        """The endpoint should be configurable."""
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(202)

        assert make_adapter(handler, endpoint="https://analytics.example/api/track").send("e", {})
        assert urls == ["https://analytics.example/api/track"]

    @pytest.mark.parametrize("status", [400, 401, 500, 503])
    def test_non_2xx_is_failure(self, status):
        """Any non-2xx status should be reported with its code."""
        result = make_adapter(lambda request: httpx.Response(status)).send("e", {})

        assert not result.success
        assert result.error.status_code == status
        assert result.error.message.startswith(f"HTTP {status}:")

    def test_transport_error_is_failure(self):
        """Connection errors should become failures, not exceptions."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = make_adapter(handler).send("e", {})

        assert not result.success
        assert "connection refused" in result.error.message
        assert result.error.status_code is None

    def test_timeout_is_failure(self):
        """A timed-out request is an ordinary failure."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert not make_adapter(handler).send("e", {}).success


class TestSentryAdapter:
    """Tests for the Sentry/GlitchTip adapter."""

    @patch("plugin_telemetry.adapters.sentry_sdk")
    def test_configure_initializes_sdk(self, mock_sentry):
        """configure() should init sentry-sdk with the DSN and privacy filter."""
        adapter = SentryAdapter(environment="staging")
        adapter.configure(Credentials("https://key@glitchtip.example/1"))

        mock_sentry.init.assert_called_once()
        kwargs = mock_sentry.init.call_args.kwargs
        assert kwargs["dsn"] == "https://key@glitchtip.example/1"
        assert kwargs["environment"] == "staging"
        assert kwargs["send_default_pii"] is False
        assert callable(kwargs["before_send"])

    def test_configure_rejects_empty_dsn(self):
        """A missing DSN is a configuration error."""
        with pytest.raises(ConfigurationError):
            SentryAdapter().configure(Credentials(""))

    @patch("plugin_telemetry.adapters.sentry_sdk")
    def test_send_captures_message_with_extras(self, mock_sentry):
        """Events become event:<name> messages with properties as extras."""
        scope = MagicMock()
        mock_sentry.new_scope.return_value.__enter__.return_value = scope
        mock_sentry.capture_message.return_value = "abc123"
        adapter = SentryAdapter()
        adapter.configure(Credentials("https://key@glitchtip.example/1"))

        result = adapter.send("course_created", {"course_id": 7})

        assert result.success
        scope.set_extra.assert_called_once_with("course_id", 7)
        mock_sentry.capture_message.assert_called_once_with("event:course_created", level="info")

    @patch("plugin_telemetry.adapters.sentry_sdk")
    def test_dropped_event_is_failure(self, mock_sentry):
        """A None event id means the SDK dropped the event."""
        mock_sentry.capture_message.return_value = None
        adapter = SentryAdapter()
        adapter.configure(Credentials("https://key@glitchtip.example/1"))

        assert not adapter.send("course_created", {}).success

    def test_unconfigured_send_fails(self):
        """Sending before configure() should fail."""
        assert not SentryAdapter().send("e", {}).success

    @patch("plugin_telemetry.adapters.sentry_sdk")
    def test_flush(self, mock_sentry):
        """flush() should drain the SDK transport once configured."""
        adapter = SentryAdapter()
        adapter.flush()
        mock_sentry.flush.assert_not_called()

        adapter.configure(Credentials("https://key@glitchtip.example/1"))
        adapter.flush(timeout=1.0)
        mock_sentry.flush.assert_called_once_with(timeout=1.0)
