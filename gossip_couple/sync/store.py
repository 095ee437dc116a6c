"""
Sync Store

Keeps the five synced collections of one couple current.

Lifecycle of one scope:
1. Open a single change-feed channel (sync:<couple_id>) carrying the five
   table feeds, filtered server-side to the couple. Events that arrive
   before the initial load finishes are buffered.
2. Bulk-fetch the five tables concurrently. If any read fails the whole
   initialization fails: error is set, the channel is closed and the
   snapshot stays empty. loading turns False only after all five reads
   have settled.
3. Install the fetched collections, then fold the buffered events and
   every later event through the reducer, one at a time, in delivery order.

Every fetch continuation and every event callback carries the generation
it was started under. rescope() and close() bump the generation first,
so nothing from a torn-down scope is ever applied.

The store never writes. Local writes show up once their change event
arrives.
"""

import asyncio
import functools
from typing import Callable, Optional

import structlog

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.models.entities import COLLECTION_NAMES, SyncSnapshot
from gossip_couple.services.repository.interface import (
    ChangeFeedTransport,
    Subscription,
)
from gossip_couple.sync.reducer import (
    COLLECTION_SPECS,
    ChangeEvent,
    CollectionSpec,
    reduce_spec,
)

logger = structlog.get_logger(__name__)

# (snapshot, collection name) -> None
SnapshotListener = Callable[[SyncSnapshot, str], None]

_SPECS_BY_TABLE = {spec.table.value: spec for spec in COLLECTION_SPECS.values()}


class SyncError(Exception):
    """Initial load of a couple scope failed."""
    pass


class SyncStore:
    """
    Subscribe-and-project store over the five synced collections.

    Usage:
        store = SyncStore(transport, audit_logger)
        await store.open("couple-id")
        store.snapshot.transactions
        await store.rescope(other_couple_id)
        await store.close()
    """

    def __init__(
        self,
        transport: ChangeFeedTransport,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._transport = transport
        self._audit = audit_logger or AuditLogger()
        self._snapshot = SyncSnapshot()
        self._loading = True
        self._error: Optional[str] = None
        self._couple_id: Optional[str] = None
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._pending: list[ChangeEvent] = []
        self._listeners: list[SnapshotListener] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # Public state
    # -------------------------------------------------------------------------

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._snapshot

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def couple_id(self) -> Optional[str]:
        return self._couple_id

    @property
    def closed(self) -> bool:
        return self._closed

    def raise_for_error(self) -> None:
        """Raise SyncError if the last initialization failed."""
        if self._error:
            raise SyncError(self._error)

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self, couple_id: Optional[str]) -> "SyncStore":
        """
        Start syncing a couple scope, tearing down any previous one.

        A None scope yields an empty snapshot with loading False.
        """
        await self._teardown()
        self._closed = False
        generation = self._generation

        self._couple_id = couple_id
        self._snapshot = SyncSnapshot()
        self._error = None

        if couple_id is None:
            self._loading = False
            self._notify("*")
            return self

        self._loading = True
        self._notify("*")

        try:
            subscription = await self._transport.subscribe(
                f"sync:{couple_id}",
                [spec.table for spec in COLLECTION_SPECS.values()],
                couple_id,
                functools.partial(self._on_change, generation),
            )
        except Exception as e:
            if generation == self._generation:
                await self._fail(couple_id, f"Failed to open change feed: {e}")
            return self

        if generation != self._generation:
            # Scope changed while the channel was opening
            await subscription.close()
            return self
        self._subscription = subscription

        results = await asyncio.gather(
            *(self._fetch(spec, couple_id) for spec in COLLECTION_SPECS.values()),
            return_exceptions=True,
        )
        if generation != self._generation:
            return self

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            await self._fail(couple_id, str(failures[0]))
            return self

        snapshot = SyncSnapshot()
        for spec, items in zip(COLLECTION_SPECS.values(), results):
            snapshot = snapshot.with_collection(spec.name, items)
        self._snapshot = snapshot
        self._loading = False

        pending, self._pending = self._pending, []
        for event in pending:
            self._apply(event)
        self._notify("*")

        await self._audit.log_sync_initialized(
            couple_id,
            {name: len(snapshot.collection(name)) for name in COLLECTION_NAMES},
        )
        return self

    async def rescope(self, couple_id: Optional[str]) -> "SyncStore":
        """Switch to another couple scope. No-op when the scope is unchanged."""
        opened = self._generation > 0
        if opened and couple_id == self._couple_id and not self._closed and not self._error:
            return self
        old_couple_id = self._couple_id
        await self.open(couple_id)
        await self._audit.log_sync_rescoped(old_couple_id, couple_id)
        return self

    async def close(self) -> None:
        """Close the change feed. No state changes after this returns."""
        if self._closed:
            return
        await self._teardown()
        self._closed = True
        self._loading = False
        await self._audit.log_sync_closed(self._couple_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _teardown(self) -> None:
        self._generation += 1
        self._pending = []
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    async def _fetch(self, spec: CollectionSpec, couple_id: str) -> list:
        try:
            rows = await self._transport.fetch_collection(
                spec.table,
                couple_id,
                order_by=spec.sort_key,
                descending=spec.descending,
            )
            return [spec.mapper(row) for row in rows]
        except Exception as e:
            raise SyncError(f"Error syncing {spec.name}: {e}") from e

    async def _fail(self, couple_id: str, message: str) -> None:
        subscription, self._subscription = self._subscription, None
        self._pending = []
        if subscription is not None:
            await subscription.close()
        self._snapshot = SyncSnapshot()
        self._error = message
        self._loading = False
        self._notify("*")
        logger.error("sync_init_failed", couple_id=couple_id, error=message)
        await self._audit.log_sync_failed(couple_id, message)

    def _on_change(self, generation: int, table: str, payload: dict) -> None:
        if generation != self._generation or self._closed:
            logger.debug("stale_change_dropped", table=table)
            return

        try:
            event = ChangeEvent.from_payload(payload, table)
        except Exception as e:
            logger.warning("malformed_change_payload", table=table, error=str(e))
            return

        row = event.new if event.new else event.old
        if row and row.get("couple_id") not in (None, self._couple_id):
            logger.warning("foreign_scope_change_dropped", table=table)
            return

        if self._loading:
            self._pending.append(event)
            return
        self._apply(event)

    def _apply(self, event: ChangeEvent) -> None:
        spec = _SPECS_BY_TABLE.get(event.table or "")
        if spec is None:
            logger.warning("unknown_change_table", table=event.table)
            return
        try:
            items = reduce_spec(self._snapshot.collection(spec.name), event, spec)
        except Exception as e:
            logger.warning("change_not_applied", table=event.table, error=str(e))
            return
        self._snapshot = self._snapshot.with_collection(spec.name, items)
        self._notify(spec.name)

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._snapshot, collection)
            except Exception as e:
                logger.warning("sync_listener_failed", error=str(e))


async def open_sync(
    couple_id: Optional[str],
    transport: ChangeFeedTransport,
    audit_logger: Optional[AuditLogger] = None,
) -> SyncStore:
    """Create a store and open it on couple_id."""
    store = SyncStore(transport, audit_logger)
    return await store.open(couple_id)
