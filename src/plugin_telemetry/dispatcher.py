"""Delivery orchestration: immediate sends and outbox flushes."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, NamedTuple, Optional

from .adapters import DeliveryAdapter, DeliveryResult
from .outbox import Outbox, QueuedEvent

logger = logging.getLogger(__name__)


class FlushResult(NamedTuple):
    """Outcome of one flush cycle."""

    delivered_count: int
    remaining_count: int


class Dispatcher:
    """Sends events through a delivery adapter.

    A flush attempts every queued event in order and deletes only the ones
    that were delivered. A failed event stays queued for the next flush and
    does not block the events behind it.
    """

    def __init__(self, adapter: DeliveryAdapter, outbox: Outbox) -> None:
        self._adapter = adapter
        self._outbox = outbox

    @property
    def adapter(self) -> DeliveryAdapter:
        return self._adapter

    def _deliver(self, event_name: str, properties: Mapping[str, Any]) -> DeliveryResult:
        try:
            result = self._adapter.send(event_name, properties)
        except Exception as e:
            logger.exception("Delivery adapter raised while sending %r", event_name)
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")

        if not result.success:
            logger.warning("Failed to deliver telemetry event %r: %s", event_name, result.error)
        return result

    def send_now(self, event_name: str, properties: Mapping[str, Any]) -> bool:
        """Attempt one immediate delivery.

        On failure the caller is responsible for queuing the event.
        """
        return self._deliver(event_name, properties).success

    def flush(self, on_delivered: Optional[Callable[[QueuedEvent], None]] = None) -> FlushResult:
        """Deliver every event currently in the outbox.

        Args:
            on_delivered: Called with each event that was delivered.

        Returns:
            Counts of delivered and still-pending events from this cycle.
        """
        events = self._outbox.drain_ordered()
        if not events:
            return FlushResult(0, 0)

        delivered: List[QueuedEvent] = []
        for event in events:
            if self._deliver(event.name, event.properties).success:
                delivered.append(event)

        self._outbox.remove(event.id for event in delivered)

        if on_delivered is not None:
            for event in delivered:
                on_delivered(event)

        remaining = len(events) - len(delivered)
        logger.debug("Telemetry flush delivered %d event(s), %d remaining", len(delivered), remaining)
        return FlushResult(len(delivered), remaining)
