"""Durable event outbox.

Pending events are stored in one table per installation scope
(``<scope>_telemetry_queue``) so that an event survives a process crash
between enqueue and delivery. Each operation is a single statement in its own
short transaction; the database's atomicity is the only concurrency control,
which keeps the outbox safe when several host processes share it.

Storage errors never escape this module. They are logged and the operation
degrades to a no-op (or an empty result), so a broken queue cannot abort the
host operation that happened to emit an event.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


def table_name_for_scope(scope_key: str) -> str:
    """Build the queue table name for an installation scope."""
    safe = re.sub(r"[^0-9A-Za-z_]", "_", scope_key)
    return f"{safe}_telemetry_queue"


def _build_table(metadata: MetaData, scope_key: str) -> Table:
    return Table(
        table_name_for_scope(scope_key),
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("event", String(255), nullable=False),
        Column("properties", Text, nullable=False),
        Column("timestamp", DateTime(timezone=True), nullable=False),
    )


@dataclass(frozen=True)
class QueuedEvent:
    """One pending outbound event, as read back from the outbox."""

    id: int
    name: str
    properties: Dict[str, Any]
    enqueued_at: datetime


class Outbox:
    """Insertion-ordered store of events awaiting delivery."""

    def __init__(self, engine: Engine, scope_key: str) -> None:
        """Initialize the outbox.

        Args:
            engine: SQLAlchemy engine for the queue database.
            scope_key: Installation scope, usually the plugin slug.
        """
        self._engine = engine
        self._scope_key = scope_key
        self._metadata = MetaData()
        self._table = _build_table(self._metadata, scope_key)

    @property
    def scope_key(self) -> str:
        return self._scope_key

    @property
    def table(self) -> Table:
        return self._table

    def create_table(self) -> None:
        """Provision the queue table if it does not exist yet."""
        try:
            self._metadata.create_all(self._engine, tables=[self._table], checkfirst=True)
        except SQLAlchemyError:
            logger.exception("Could not create telemetry queue table %s", self._table.name)

    def append(self, event_name: str, properties: Mapping[str, Any]) -> Optional[int]:
        """Persist one event.

        Args:
            event_name: Event identifier.
            properties: JSON-compatible, already enriched properties.

        Returns:
            The id of the new row, or None if the event was not stored.
        """
        try:
            payload = json.dumps(dict(properties))
        except (TypeError, ValueError):
            logger.exception("Dropping telemetry event %r: properties are not JSON-serializable", event_name)
            return None

        stmt = insert(self._table).values(
            event=event_name,
            properties=payload,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError:
            logger.exception("Could not enqueue telemetry event %r", event_name)
            return None
        return result.inserted_primary_key[0]

    def drain_ordered(self) -> List[QueuedEvent]:
        """Return all pending events in ascending id order, without removing them."""
        stmt = select(self._table).order_by(self._table.c.id)
        try:
            with self._engine.begin() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError:
            logger.exception("Could not read telemetry queue %s", self._table.name)
            return []

        events = []
        for row in rows:
            try:
                properties = json.loads(row.properties)
            except ValueError:
                logger.warning("Skipping queued event %s (%r): stored properties are not valid JSON", row.id, row.event)
                continue
            events.append(
                QueuedEvent(
                    id=row.id,
                    name=row.event,
                    properties=properties,
                    enqueued_at=row.timestamp,
                )
            )
        return events

    def remove(self, ids: Iterable[int]) -> None:
        """Delete exactly the given rows. Unknown ids are ignored."""
        id_set = {int(i) for i in ids}
        if not id_set:
            return

        stmt = delete(self._table).where(self._table.c.id.in_(id_set))
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError:
            logger.exception("Could not remove %d delivered telemetry events", len(id_set))

    def clear_for_scope(self, scope_key: str) -> None:
        """Delete every pending row of an installation scope (used on teardown)."""
        if scope_key == self._scope_key:
            table = self._table
        else:
            table = _build_table(MetaData(), scope_key)

        try:
            with self._engine.begin() as conn:
                if not self._engine.dialect.has_table(conn, table.name):
                    return
                conn.execute(delete(table))
        except SQLAlchemyError:
            logger.exception("Could not clear telemetry queue for scope %r", scope_key)

    def count(self) -> int:
        """Number of pending events."""
        stmt = select(func.count()).select_from(self._table)
        try:
            with self._engine.begin() as conn:
                return conn.execute(stmt).scalar_one()
        except SQLAlchemyError:
            logger.exception("Could not count telemetry queue %s", self._table.name)
            return 0
