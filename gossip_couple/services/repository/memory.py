"""
In-Memory Backend

A process-local stand-in for the hosted backend, used by the test suite
and for running the app without credentials. Writes publish change-feed
payloads to open subscriptions exactly like the realtime service does,
so the sync store can be exercised end to end.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import structlog

from gossip_couple.models.audit import AuditEvent
from gossip_couple.services.repository.interface import (
    AuditStorageInterface,
    ChangeFeedTransport,
    ChangeHandler,
    CoupleRepository,
    DuplicateError,
    StorageError,
    Subscription,
    Table,
)

logger = structlog.get_logger(__name__)


def _matches(row: dict, filters: Optional[dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(row.get(column) == value for column, value in filters.items())


class _MemorySubscription(Subscription):
    def __init__(
        self,
        channel: str,
        tables: list[Table],
        couple_id: str,
        handler: ChangeHandler,
    ):
        self.channel = channel
        self.tables = {Table(t).value for t in tables}
        self.couple_id = couple_id
        self.handler = handler
        self.closed = False

    def wants(self, table: str, row: Optional[dict]) -> bool:
        if self.closed or table not in self.tables:
            return False
        # DELETE payloads may carry only the primary key
        if not row or "couple_id" not in row:
            return True
        return row["couple_id"] == self.couple_id

    async def close(self) -> None:
        self.closed = True


class InMemoryBackend(CoupleRepository, ChangeFeedTransport, AuditStorageInterface):
    """
    Dict-of-lists backend implementing every storage seam.

    Attributes:
        failing_tables: reads and writes on these tables raise StorageError,
            to simulate backend outages.
        audit_events: every audit event appended so far.
    """

    def __init__(self, seed: Optional[dict[str, list[dict]]] = None):
        self._tables: dict[str, list[dict]] = {t.value: [] for t in Table}
        for table, rows in (seed or {}).items():
            self._tables[Table(table).value] = [copy.deepcopy(r) for r in rows]
        self._subscriptions: list[_MemorySubscription] = []
        self.failing_tables: set[str] = set()
        self.audit_events: list[AuditEvent] = []

    def rows(self, table: Table) -> list[dict]:
        """Direct view of a table, for assertions."""
        return self._tables[Table(table).value]

    @property
    def open_subscriptions(self) -> list[_MemorySubscription]:
        return [s for s in self._subscriptions if not s.closed]

    def _check(self, table: Table) -> str:
        name = Table(table).value
        if name in self.failing_tables:
            raise StorageError(f"Backend unavailable for table {name}")
        return name

    # -------------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------------

    def emit(
        self,
        table: Table,
        event_type: str,
        new: Optional[dict] = None,
        old: Optional[dict] = None,
    ) -> None:
        """Publish a raw change payload to matching subscriptions."""
        name = Table(table).value
        payload = {
            "eventType": event_type,
            "table": name,
            "new": copy.deepcopy(new) if new else {},
            "old": copy.deepcopy(old) if old else {},
        }
        row = new if event_type != "DELETE" else old
        for sub in list(self._subscriptions):
            if sub.wants(name, row):
                sub.handler(name, payload)

    async def fetch_collection(
        self,
        table: Table,
        couple_id: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        return await self.select(
            table,
            {"couple_id": couple_id},
            order_by=order_by,
            descending=descending,
        )

    async def subscribe(
        self,
        channel: str,
        tables: list[Table],
        couple_id: str,
        handler: ChangeHandler,
    ) -> Subscription:
        sub = _MemorySubscription(channel, tables, couple_id, handler)
        self._subscriptions.append(sub)
        logger.debug("memory_channel_opened", channel=channel, tables=sorted(sub.tables))
        return sub

    # -------------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: Table,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        name = self._check(table)
        rows = [copy.deepcopy(r) for r in self._tables[name] if _matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: Table, record: dict) -> dict:
        name = self._check(table)
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        if any(r.get("id") == row["id"] for r in self._tables[name]):
            raise DuplicateError(f"{name} row {row['id']} already exists")
        self._tables[name].append(row)
        self.emit(table, "INSERT", new=row)
        return copy.deepcopy(row)

    async def update(
        self,
        table: Table,
        filters: dict[str, Any],
        changes: dict,
    ) -> list[dict]:
        name = self._check(table)
        updated = []
        for row in self._tables[name]:
            if _matches(row, filters):
                old = copy.deepcopy(row)
                row.update(copy.deepcopy(changes))
                updated.append(copy.deepcopy(row))
                self.emit(table, "UPDATE", new=row, old=old)
        return updated

    async def upsert(
        self,
        table: Table,
        record: dict,
        on_conflict: str = "id",
    ) -> dict:
        self._check(table)
        key = record.get(on_conflict)
        if key is not None:
            existing = await self.select(table, {on_conflict: key}, limit=1)
            if existing:
                rows = await self.update(table, {on_conflict: key}, record)
                return rows[0]
        return await self.insert(table, record)

    async def delete(self, table: Table, filters: dict[str, Any]) -> int:
        """Remove matching rows, publishing DELETE payloads. Returns the count."""
        name = self._check(table)
        keep, removed = [], []
        for row in self._tables[name]:
            (removed if _matches(row, filters) else keep).append(row)
        self._tables[name] = keep
        for row in removed:
            self.emit(table, "DELETE", old=row)
        return len(removed)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self.audit_events.append(event)
        return True
