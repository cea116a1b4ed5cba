"""Telemetry client facade for plugins.

The host application creates one TelemetryClient per plugin installation and
hands it to whatever code needs to emit events. The client wires together
the consent gate, the durable outbox, the dispatcher and the one-shot
ledger, and exposes the tracking API.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url

from .adapters import Credentials, DeliveryAdapter, OpenPanelAdapter
from .config import TelemetryConfig
from .consent import ConsentGate
from .dispatcher import Dispatcher, FlushResult
from .events import (
    Enricher,
    EventName,
    Identity,
    PayloadBuilder,
    generate_profile_id,
    kui_event_name,
    kui_name_from_event,
)
from .ledger import OneShotLedger
from .outbox import Outbox, QueuedEvent
from .scheduler import Scheduler
from .settings import SettingsStore

logger = logging.getLogger(__name__)


def _default_outbox(config: TelemetryConfig) -> Outbox:
    url = make_url(config.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return Outbox(create_engine(url), config.plugin_slug)


class TelemetryClient:
    """Consent-gated telemetry client for one plugin installation.

    Tracking calls are fire-and-forget: they never raise because of consent,
    delivery or storage problems. Only invalid configuration raises, and only
    while the client is being constructed.
    """

    def __init__(
        self,
        config: TelemetryConfig,
        settings: SettingsStore,
        adapter: Optional[DeliveryAdapter] = None,
        outbox: Optional[Outbox] = None,
        scheduler: Optional[Scheduler] = None,
        identity_provider: Optional[Callable[[], Optional[Identity]]] = None,
        enrich: Optional[Enricher] = None,
    ) -> None:
        """Initialize the telemetry client.

        Args:
            config: Plugin identity, credentials and behavior options.
            settings: Persistent key/value store of the host.
            adapter: Delivery adapter. Defaults to an OpenPanelAdapter for
                ``config.endpoint``.
            outbox: Event outbox. Defaults to one on ``config.database_url``.
            scheduler: Periodic scheduler used to flush the outbox. Without
                one the host has to call flush() itself.
            identity_provider: Returns the current actor, or None for
                anonymous events.
            enrich: Final hook applied to every event's properties.

        Raises:
            ConfigurationError: If the credentials are rejected by the adapter.
        """
        self._config = config
        self._settings = settings
        self._slug = config.plugin_slug
        self._scheduler = scheduler

        if adapter is None:
            adapter = OpenPanelAdapter(
                endpoint=config.endpoint,
                timeout=config.timeout,
                host_name=config.host_name,
                host_version=config.host_version,
            )
        adapter.configure(Credentials(config.api_key, config.api_secret))

        self._outbox = outbox if outbox is not None else _default_outbox(config)
        self._outbox.create_table()

        self._unique_id = self._get_or_create_unique_id()
        self._consent = ConsentGate(settings, f"{self._slug}_allow_tracking", enabled=config.enabled)
        self._consent.subscribe(self._on_consent_changed)
        self._ledger = OneShotLedger(settings, self._slug, config.kui_thresholds)
        self._dispatcher = Dispatcher(adapter, self._outbox)
        self._payloads = PayloadBuilder(
            config,
            self._unique_id,
            identity_provider=identity_provider,
            enrich=enrich,
        )

        if self._consent.is_allowed():
            self._schedule_reporting()

    # Accessors

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def unique_id(self) -> str:
        """Stable per-installation identifier."""
        return self._unique_id

    @property
    def consent(self) -> ConsentGate:
        return self._consent

    @property
    def outbox(self) -> Outbox:
        return self._outbox

    @property
    def ledger(self) -> OneShotLedger:
        return self._ledger

    @property
    def is_opted_in(self) -> bool:
        return self._consent.is_allowed()

    @property
    def cron_hook(self) -> str:
        """Name under which the periodic flush is registered."""
        return f"{self._slug}_telemetry_queue_process"

    @property
    def last_send(self) -> Optional[int]:
        """Epoch seconds of the last successful delivery, if any."""
        value = self._settings.get(self._key("telemetry_last_send"))
        return int(value) if value is not None else None

    def _key(self, name: str) -> str:
        return f"{self._slug}_{name}"

    def _get_or_create_unique_id(self) -> str:
        key = self._key("telemetry_unique_id")
        unique_id = self._settings.get(key)
        if not unique_id:
            unique_id = generate_profile_id()
            self._settings.set(key, unique_id, False)
        return unique_id

    def _record_send(self) -> None:
        self._settings.set(self._key("telemetry_last_send"), int(time.time()), False)

    # Tracking API

    def _build_payload(self, event: str, properties: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        try:
            return self._payloads.build(event, properties)
        except Exception:
            logger.exception("Dropping telemetry event %r: building its properties failed", event)
            return None

    def _enqueue(self, event: str, properties: Optional[Dict[str, Any]]) -> Optional[int]:
        payload = self._build_payload(event, properties)
        if payload is None:
            return None
        return self._outbox.append(event, payload)

    def track(
        self,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
        override: bool = False,
    ) -> None:
        """Queue an event for the next flush.

        Args:
            event: Event name, e.g. "course_created".
            properties: Event properties.
            override: Skip the opt-in check (pre-approved events only).
        """
        if not override and not self._consent.is_allowed():
            logger.debug("Telemetry consent not granted, dropping %r", event)
            return

        self._enqueue(event, properties)

    def track_immediate(
        self,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
        override: bool = False,
    ) -> None:
        """Send an event right away, queuing it if the send fails.

        Args:
            event: Event name.
            properties: Event properties.
            override: Skip the opt-in check (pre-approved events only).
        """
        if not override and not self._consent.is_allowed():
            logger.debug("Telemetry consent not granted, dropping %r", event)
            return

        self._send_direct(event, properties, queue_on_failure=True)

    def _send_direct(self, event: str, properties: Optional[Dict[str, Any]], queue_on_failure: bool) -> None:
        payload = self._build_payload(event, properties)
        if payload is None:
            return
        if self._dispatcher.send_now(event, payload):
            self._record_send()
        elif queue_on_failure:
            self._outbox.append(event, payload)

    def _track_once(self, event_name: str, properties: Optional[Dict[str, Any]]) -> None:
        if self._ledger.has_fired(event_name):
            return
        # Gated-out calls leave the flag unset.
        if not self._consent.is_allowed():
            logger.debug("Telemetry consent not granted, deferring %r", event_name)
            return

        if self._enqueue(event_name, properties) is not None:
            self._ledger.mark_fired(event_name)

    def track_setup(self, properties: Optional[Dict[str, Any]] = None) -> None:
        """Track plugin setup completion. Sent at most once per installation."""
        self._track_once(EventName.SETUP.value, properties)

    def track_first_strike(self, properties: Optional[Dict[str, Any]] = None) -> None:
        """Track the user's first experience of the plugin's core value. Sent at most once."""
        self._track_once(EventName.FIRST_STRIKE.value, properties)

    def track_kui(self, kui_name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """Track a key usage indicator event (``kui_<name>``). Repeatable.

        Does not touch the counter kept by record_kui().
        """
        self.track(kui_event_name(kui_name), properties)

    def configure_kui(self, kui_name: str, threshold: int) -> None:
        """Fire ``kui_<name>`` once ``threshold`` occurrences have been recorded."""
        self._ledger.configure(kui_name, threshold)

    def record_kui(self, kui_name: str, properties: Optional[Dict[str, Any]] = None) -> int:
        """Count one occurrence of a key usage indicator.

        Once the count is at or past the configured threshold the bound KUI
        event is queued, unless a previously queued one is still waiting for
        delivery. The counter is reset when that queued event is delivered.

        Returns:
            The new count, or 0 if consent is not granted.
        """
        if not self._consent.is_allowed():
            return 0

        count = self._ledger.increment(kui_name)
        if self._ledger.threshold_reached(kui_name) and self._ledger.pending_row(kui_name) is None:
            row_id = self._enqueue(
                kui_event_name(kui_name),
                {**(properties or {}), "count": count, "threshold": self._ledger.threshold(kui_name)},
            )
            if row_id is not None:
                self._ledger.mark_pending(kui_name, row_id)
        return count

    def flush(self) -> FlushResult:
        """Deliver every queued event. Invoked by the periodic scheduler."""
        delivered = []

        def on_delivered(event: QueuedEvent) -> None:
            kui_name = kui_name_from_event(event.name)
            if kui_name is not None:
                delivered.append((kui_name, event.id))

        result = self._dispatcher.flush(on_delivered=on_delivered)

        for kui_name, row_id in delivered:
            self._ledger.settle(kui_name, row_id)
        if result.delivered_count:
            self._record_send()
        return result

    def _purge_queue(self) -> None:
        self._outbox.clear_for_scope(self._slug)
        self._ledger.clear_pending()

    # Consent

    def grant_consent(self) -> None:
        self._consent.grant()

    def revoke_consent(self) -> None:
        self._consent.revoke()

    def _on_consent_changed(self, allowed: bool) -> None:
        if allowed:
            self._schedule_reporting()
            if self._settings.get(self._key("telemetry_activation_pending")) == "yes":
                self._send_activation()
        else:
            self._unschedule_reporting()
            if self._config.purge_on_revoke:
                self._purge_queue()

    # Host lifecycle

    def activate(self) -> None:
        """Handle the host's plugin activation signal."""
        self._outbox.create_table()
        self._settings.set(self._key("telemetry_activation_pending"), "yes", False)

        # No consent prompt follows an opted-in activation.
        if self._consent.is_allowed():
            self._send_activation()

    def _send_activation(self) -> None:
        self.track_immediate(
            EventName.PLUGIN_ACTIVATED.value,
            {"site_url": self._config.site_url, "unique_id": self._unique_id},
        )
        self._settings.delete(self._key("telemetry_activation_pending"))
        logger.info("Reported activation of %s", self._slug)

    def track_deactivation_feedback(self, reason: str, details: str = "") -> None:
        """Report deactivation together with the user's feedback.

        deactivate() will not send a second, feedback-less event afterwards.
        """
        if not self._consent.is_allowed():
            return

        self.track_immediate(
            EventName.PLUGIN_DEACTIVATED.value,
            {
                "site_url": self._config.site_url,
                "unique_id": self._unique_id,
                "feedback_provided": True,
                "reason": reason,
                "details": details,
            },
        )
        self._settings.set(self._key("deactivation_event_sent"), "yes", False)

    def deactivate(self) -> None:
        """Handle the host's plugin deactivation signal.

        Reports the deactivation (unless feedback already did), stops the
        periodic flush and purges this installation's queued events. The
        deactivation event gets a single delivery attempt: a failed send is
        not queued, because the queue is purged right after.
        """
        feedback_key = self._key("deactivation_event_sent")
        if self._settings.get(feedback_key) != "yes" and self._consent.is_allowed():
            self._send_direct(
                EventName.PLUGIN_DEACTIVATED.value,
                {
                    "site_url": self._config.site_url,
                    "unique_id": self._unique_id,
                    "feedback_provided": False,
                },
                queue_on_failure=False,
            )
        self._settings.delete(feedback_key)

        self._unschedule_reporting()
        self._purge_queue()

    # Scheduling

    def _schedule_reporting(self) -> None:
        if self._scheduler is None or self._scheduler.is_registered(self.cron_hook):
            return
        self._scheduler.register(self.cron_hook, self._config.report_interval.seconds, self.flush)

    def _unschedule_reporting(self) -> None:
        if self._scheduler is not None and self._scheduler.is_registered(self.cron_hook):
            self._scheduler.unregister(self.cron_hook)
