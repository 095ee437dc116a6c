"""
Supabase Storage Implementation

DESIGN DECISION: The hosted backend owns auth, rows, realtime and files.
This module is the only place that talks to its tables and channels:
1. Row-level security scopes every query to the caller's couple
2. Realtime channels deliver the change feeds the sync store folds
3. The audit trail lands in its own append-only table

TRADEOFFS:
- Reads are retried (idempotent), writes are not (a duplicate insert is
  worse than a surfaced error)
- Filters are equality only; anything richer belongs in a database view

The implementation follows the abstract interfaces, so tests and local
runs swap in InMemoryBackend without changing business logic.
"""

from typing import Any, Optional

import structlog
from supabase import AsyncClient, acreate_client
from tenacity import retry, stop_after_attempt, wait_exponential

from gossip_couple.config import get_settings
from gossip_couple.models.audit import AuditEvent
from gossip_couple.services.repository.interface import (
    AuditStorageInterface,
    BackendConnectionError,
    ChangeFeedTransport,
    ChangeHandler,
    CoupleRepository,
    DuplicateError,
    StorageError,
    Subscription,
    Table,
    WriteError,
)

logger = structlog.get_logger(__name__)


async def create_supabase_client(use_service_role: bool = False) -> AsyncClient:
    """
    Create an async Supabase client from settings.

    The service role key bypasses row-level security and is only for
    server-side jobs (payment webhook, invite joins, price refresh).
    """
    settings = get_settings().supabase
    key = settings.service_role_key if use_service_role else settings.anon_key
    if not key:
        raise BackendConnectionError("Supabase service role key is not configured")
    try:
        return await acreate_client(settings.url, key)
    except Exception as e:
        raise BackendConnectionError(f"Failed to connect to Supabase: {e}")


def _is_duplicate(error: Exception) -> bool:
    # Postgres unique_violation
    return getattr(error, "code", None) == "23505" or "duplicate key" in str(error)


class SupabaseSubscription(Subscription):
    """One realtime channel multiplexing several table feeds."""

    def __init__(self, client: AsyncClient, channel):
        self._client = client
        self._channel = channel
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            logger.warning("channel_close_failed", error=str(e))


class SupabaseBackend(CoupleRepository, ChangeFeedTransport, AuditStorageInterface):
    """
    Supabase implementation of every storage seam.

    Rows are returned as plain dicts straight from PostgREST; decoding
    into typed rows happens in the sync mappers and services.
    """

    def __init__(self, client: AsyncClient, schema: Optional[str] = None):
        self._client = client
        self._schema = schema or get_settings().supabase.schema_name

    @property
    def client(self) -> AsyncClient:
        return self._client

    # -------------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def select(
        self,
        table: Table,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Select rows with equality filters."""
        try:
            query = self._client.table(Table(table).value).select("*")
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(limit)
            response = await query.execute()
            return list(response.data or [])
        except Exception as e:
            raise StorageError(f"Failed to read {Table(table).value}: {e}")

    async def insert(self, table: Table, record: dict) -> dict:
        """Insert a row and return it as stored."""
        try:
            response = await self._client.table(Table(table).value).insert(record).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise DuplicateError(f"{Table(table).value} row already exists: {record.get('id')}")
            raise WriteError(f"Failed to insert into {Table(table).value}: {e}")
        rows = response.data or []
        return rows[0] if rows else dict(record)

    async def update(
        self,
        table: Table,
        filters: dict[str, Any],
        changes: dict,
    ) -> list[dict]:
        """Update matching rows."""
        if not filters:
            raise WriteError("Refusing to update without filters")
        try:
            query = self._client.table(Table(table).value).update(changes)
            for column, value in filters.items():
                query = query.eq(column, value)
            response = await query.execute()
            return list(response.data or [])
        except Exception as e:
            raise WriteError(f"Failed to update {Table(table).value}: {e}")

    async def upsert(
        self,
        table: Table,
        record: dict,
        on_conflict: str = "id",
    ) -> dict:
        """Insert or update keyed by on_conflict."""
        try:
            response = await (
                self._client.table(Table(table).value)
                .upsert(record, on_conflict=on_conflict)
                .execute()
            )
        except Exception as e:
            raise WriteError(f"Failed to upsert into {Table(table).value}: {e}")
        rows = response.data or []
        return rows[0] if rows else dict(record)

    # -------------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------------

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
        """
        Open one realtime channel with a postgres_changes listener per table.

        Every listener is filtered server-side to couple_id.
        """
        realtime_channel = self._client.channel(channel)
        for table in tables:
            name = Table(table).value
            realtime_channel.on_postgres_changes(
                event="*",
                schema=self._schema,
                table=name,
                filter=f"couple_id=eq.{couple_id}",
                callback=lambda payload, name=name: handler(name, payload),
            )
        try:
            await realtime_channel.subscribe()
        except Exception as e:
            raise BackendConnectionError(f"Failed to subscribe to {channel}: {e}")

        logger.info("channel_subscribed", channel=channel, tables=[Table(t).value for t in tables])
        return SupabaseSubscription(self._client, realtime_channel)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._client.table(Table.AUDIT_EVENTS.value).insert(event.to_record()).execute()
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False
