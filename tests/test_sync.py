"""
Tests for the sync layer: mappers, reducer and the sync store.
"""

import asyncio
from decimal import Decimal

import pytest

from gossip_couple.models.entities import (
    Assignee,
    EventType,
    GoalStatus,
    MemberRole,
    MemberSlot,
    RiskTolerance,
    TaskPriority,
    Transaction,
    TransactionType,
)
from gossip_couple.services.repository import InMemoryBackend
from gossip_couple.services.repository.interface import Table
from gossip_couple.sync.mappers import (
    map_couple,
    map_event,
    map_goal,
    map_investment,
    map_profile,
    map_task,
    map_transaction,
)
from gossip_couple.sync.reducer import (
    ChangeEvent,
    ChangeKind,
    reduce,
)
from gossip_couple.sync.store import SyncError, SyncStore

from conftest import COUPLE_ID, OTHER_COUPLE_ID


def tx_row(tx_id, date, couple_id=COUPLE_ID, **extra):
    row = {
        "id": tx_id,
        "couple_id": couple_id,
        "amount": 10,
        "category": "Food",
        "description": "Lunch",
        "type": "expense",
        "date": date,
    }
    row.update(extra)
    return row


class TestMappers:
    """Tests for row -> entity mapping."""

    def test_transaction_with_member_reference(self):
        """Test a transaction with a member reference maps to user1."""
        tx = map_transaction(tx_row("t1", "2026-01-01", user_id="u1"))
        assert tx.user_id == MemberSlot.USER1

    def test_transaction_without_member_reference(self):
        """Test a transaction without a member reference maps to user2."""
        tx = map_transaction(tx_row("t1", "2026-01-01", user_id=None))
        assert tx.user_id == MemberSlot.USER2

    def test_transaction_null_columns(self):
        """Test null columns get documented defaults."""
        tx = map_transaction({"id": "t1", "amount": None, "category": None, "type": None})
        assert tx.amount == Decimal("0")
        assert tx.category == ""
        assert tx.type == TransactionType.EXPENSE

    def test_goal_status_copied_not_derived(self):
        """Test a goal over its target keeps the stored status."""
        goal = map_goal({
            "id": "g1",
            "target_amount": 100,
            "current_amount": 150,
            "status": "in-progress",
        })
        assert goal.status == GoalStatus.IN_PROGRESS

    def test_task_priority_defaults_to_medium(self):
        """Test a null priority maps to medium."""
        task = map_task({"id": "k1", "title": "Pay rent", "priority": None})
        assert task.priority == TaskPriority.MEDIUM

    def test_task_assignee_pinned_to_both(self):
        """Test the stored assignee_id is discarded."""
        task = map_task({"id": "k1", "assignee_id": "u1"})
        assert task.assignee == Assignee.BOTH

    def test_event_synced_flag(self):
        """Test synced is derived from the google event id."""
        assert map_event({"id": "e1", "google_event_id": "g-1"}).synced is True
        assert map_event({"id": "e1", "google_event_id": None}).synced is False

    def test_event_unknown_type_falls_back(self):
        """Test an unknown event type maps to social."""
        assert map_event({"id": "e1", "type": "party"}).type == EventType.SOCIAL

    def test_investment_totals(self):
        """Test total_invested is quantity times purchase price."""
        inv = map_investment({
            "symbol": "AAPL",
            "quantity": 2,
            "purchase_price": 100,
            "current_price": 150,
        })
        assert inv.total_invested == Decimal("200")
        assert inv.price == Decimal("150")
        assert inv.change == Decimal("0")

    def test_profile_falls_back_to_legacy_receipt_column(self):
        """Test older rows with income_date still map."""
        profile = map_profile({"id": "u1", "income_date": 5, "role": "P1"})
        assert profile.income_receipt_date == 5
        assert profile.role == MemberRole.P1

    def test_couple_risk_profile(self):
        """Test the couple's financial_risk_profile column maps onto risk_profile."""
        assert map_couple({"id": "c1", "financial_risk_profile": "high"}).risk_profile == RiskTolerance.HIGH
        assert map_couple({"id": "c1", "financial_risk_profile": "bold"}).risk_profile is None

    def test_mapper_rejects_row_without_id(self):
        """Test a row missing its id fails validation."""
        with pytest.raises(ValueError):
            map_goal({"title": "Trip"})


class TestChangeEvent:
    """Tests for change payload normalization."""

    def test_flat_payload(self):
        """Test the flat {eventType, new, old} shape."""
        event = ChangeEvent.from_payload(
            {"eventType": "insert", "new": {"id": "t1"}, "old": {}},
            "transactions",
        )
        assert event.kind == ChangeKind.INSERT
        assert event.table == "transactions"
        assert event.old is None

    def test_realtime_payload(self):
        """Test the realtime-py {data: {type, record, old_record}} shape."""
        event = ChangeEvent.from_payload({
            "data": {
                "type": "DELETE",
                "table": "goals",
                "record": None,
                "old_record": {"id": "g1"},
            }
        })
        assert event.kind == ChangeKind.DELETE
        assert event.table == "goals"
        assert event.old == {"id": "g1"}

    def test_unknown_kind_rejected(self):
        """Test an unknown event kind raises."""
        with pytest.raises(ValueError):
            ChangeEvent.from_payload({"eventType": "TRUNCATE"})


class TestReducer:
    """Tests for folding change events into a collection."""

    def _insert(self, row):
        return ChangeEvent(kind=ChangeKind.INSERT, new=row)

    def test_insert_appends(self):
        """Test INSERT appends the mapped row."""
        items = reduce([], self._insert(tx_row("t1", "2026-01-01")), map_transaction)
        assert [t.id for t in items] == ["t1"]

    def test_replayed_insert_is_idempotent(self):
        """Test replaying an insert never duplicates the row."""
        event = self._insert(tx_row("t1", "2026-01-01"))
        once = reduce([], event, map_transaction)
        twice = reduce(once, event, map_transaction)
        assert len(twice) == 1

    def test_update_replaces(self):
        """Test UPDATE replaces the entity with the same id."""
        items = reduce([], self._insert(tx_row("t1", "2026-01-01")), map_transaction)
        event = ChangeEvent(kind=ChangeKind.UPDATE, new=tx_row("t1", "2026-01-01", amount=99))
        items = reduce(items, event, map_transaction)
        assert items[0].amount == Decimal("99")

    def test_update_unknown_key_is_noop(self):
        """Test UPDATE of a row that isn't held leaves the collection alone."""
        items = [Transaction(id="t1")]
        event = ChangeEvent(kind=ChangeKind.UPDATE, new=tx_row("t9", "2026-01-01"))
        assert reduce(items, event, map_transaction) == items

    def test_delete_unknown_key_is_noop(self):
        """Test DELETE of a row that isn't held leaves the collection alone."""
        items = [Transaction(id="t1")]
        event = ChangeEvent(kind=ChangeKind.DELETE, old={"id": "t9"})
        assert reduce(items, event, map_transaction) == items

    def test_input_not_mutated(self):
        """Test the input collection is never mutated."""
        items = [Transaction(id="t1")]
        reduce(items, ChangeEvent(kind=ChangeKind.DELETE, old={"id": "t1"}), map_transaction)
        assert len(items) == 1

    def test_sorted_after_every_event(self):
        """Test transactions stay newest-first after inserts and updates."""
        items = []
        for tx_id, date in [("a", "2026-01-02"), ("b", "2026-03-01"), ("c", "2026-02-01")]:
            items = reduce(items, self._insert(tx_row(tx_id, date)), map_transaction, "date", True)
            dates = [t.date for t in items]
            assert dates == sorted(dates, reverse=True)

        event = ChangeEvent(kind=ChangeKind.UPDATE, new=tx_row("a", "2026-04-01"))
        items = reduce(items, event, map_transaction, "date", True)
        assert [t.id for t in items] == ["a", "b", "c"]

    def test_investment_keyed_by_symbol(self):
        """Test investments without ids are matched by symbol."""
        items = reduce(
            [],
            self._insert({"symbol": "BTC", "quantity": 1, "current_price": 10}),
            map_investment,
        )
        update = ChangeEvent(
            kind=ChangeKind.UPDATE,
            new={"symbol": "BTC", "quantity": 1, "current_price": 20},
        )
        items = reduce(items, update, map_investment)
        assert len(items) == 1
        assert items[0].price == Decimal("20")


class FeedDuringLoadBackend(InMemoryBackend):
    """Publishes a change while the initial bulk fetch is in flight."""

    def __init__(self, pending_row, **kwargs):
        super().__init__(**kwargs)
        self.pending_row = pending_row

    async def fetch_collection(self, table, couple_id, order_by=None, descending=False):
        rows = await super().fetch_collection(table, couple_id, order_by, descending)
        if Table(table) == Table.TRANSACTIONS and self.pending_row is not None:
            row, self.pending_row = self.pending_row, None
            self.emit(Table.TRANSACTIONS, "INSERT", new=row)
        return rows


class TestSyncStore:
    """Tests for the subscribe-and-project store."""

    def test_empty_scope_initializes(self, backend):
        """Test an empty couple ends with empty collections and loading False."""
        store = SyncStore(backend)
        assert store.loading is True

        asyncio.run(store.open(COUPLE_ID))

        assert store.loading is False
        assert store.error is None
        assert all(items == [] for items in store.snapshot.as_lists().values())

    def test_initial_load_is_scoped(self):
        """Test only the couple's rows are loaded."""
        backend = InMemoryBackend(seed={
            "transactions": [
                tx_row("t1", "2026-01-01"),
                tx_row("t2", "2026-01-02", couple_id=OTHER_COUPLE_ID),
            ],
            "goals": [{"id": "g1", "couple_id": COUPLE_ID, "title": "Trip"}],
        })
        store = SyncStore(backend)
        asyncio.run(store.open(COUPLE_ID))

        assert [t.id for t in store.snapshot.transactions] == ["t1"]
        assert [g.title for g in store.snapshot.goals] == ["Trip"]

    def test_null_amount_row_loads(self):
        """Test a transaction with a null amount loads as zero instead of failing the sync."""
        row = tx_row("t1", "2026-01-01")
        row["amount"] = None
        backend = InMemoryBackend(seed={"transactions": [row]})
        store = SyncStore(backend)
        asyncio.run(store.open(COUPLE_ID))

        assert store.error is None
        assert [t.amount for t in store.snapshot.transactions] == [Decimal("0")]

    def test_none_scope(self, backend):
        """Test a None scope yields an empty snapshot and opens no channel."""
        store = SyncStore(backend)
        asyncio.run(store.open(None))

        assert store.loading is False
        assert backend.open_subscriptions == []

    def test_live_changes_applied(self, backend):
        """Test a write after load appears in the snapshot."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            await backend.insert(Table.TRANSACTIONS, tx_row("t1", "2026-01-01"))
            await backend.insert(Table.TRANSACTIONS, tx_row("t2", "2026-02-01"))
            return store

        store = asyncio.run(scenario())
        assert [t.id for t in store.snapshot.transactions] == ["t2", "t1"]

    def test_other_scope_changes_ignored(self, backend):
        """Test writes for another couple never reach this snapshot."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            await backend.insert(
                Table.TRANSACTIONS,
                tx_row("t1", "2026-01-01", couple_id=OTHER_COUPLE_ID),
            )
            return store

        store = asyncio.run(scenario())
        assert store.snapshot.transactions == ()

    def test_foreign_payload_dropped(self, backend):
        """Test a delivered payload carrying another couple_id is dropped."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            store._on_change(
                store._generation,
                "transactions",
                {"eventType": "INSERT", "new": tx_row("t1", "2026-01-01", couple_id=OTHER_COUPLE_ID)},
            )
            return store

        store = asyncio.run(scenario())
        assert store.snapshot.transactions == ()

    def test_events_during_load_are_buffered(self):
        """Test a change arriving mid-load is applied after the load."""
        backend = FeedDuringLoadBackend(
            tx_row("t2", "2026-02-01"),
            seed={"transactions": [tx_row("t1", "2026-01-01")]},
        )
        store = SyncStore(backend)
        asyncio.run(store.open(COUPLE_ID))

        assert [t.id for t in store.snapshot.transactions] == ["t2", "t1"]

    def test_failed_read_fails_initialization(self, backend, audit):
        """Test one failing table fails the whole load."""
        backend.failing_tables.add("goals")
        store = SyncStore(backend, audit)
        asyncio.run(store.open(COUPLE_ID))

        assert store.loading is False
        assert "goals" in store.error
        assert store.snapshot.transactions == ()
        assert backend.open_subscriptions == []
        with pytest.raises(SyncError):
            store.raise_for_error()
        assert backend.audit_events[-1].event_type.value == "sync_failed"

    def test_rescope_drops_old_scope(self, backend):
        """Test events from the previous scope are not applied after rescope."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            old_generation = store._generation
            await store.rescope(OTHER_COUPLE_ID)
            store._on_change(
                old_generation,
                "transactions",
                {"eventType": "INSERT", "new": tx_row("t1", "2026-01-01")},
            )
            await backend.insert(Table.TRANSACTIONS, tx_row("t2", "2026-01-01"))
            return store

        store = asyncio.run(scenario())
        assert store.couple_id == OTHER_COUPLE_ID
        assert store.snapshot.transactions == ()
        assert len(backend.open_subscriptions) == 1

    def test_rescope_same_scope_is_noop(self, backend):
        """Test rescoping to the current couple keeps the channel."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            before = backend.open_subscriptions[0]
            await store.rescope(COUPLE_ID)
            return before

        before = asyncio.run(scenario())
        assert backend.open_subscriptions == [before]

    def test_close_stops_updates(self, backend):
        """Test nothing changes after close."""
        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            await store.close()
            await backend.insert(Table.TRANSACTIONS, tx_row("t1", "2026-01-01"))
            return store

        store = asyncio.run(scenario())
        assert store.closed is True
        assert store.snapshot.transactions == ()
        assert backend.open_subscriptions == []

    def test_listeners_notified(self, backend):
        """Test listeners see each changed collection."""
        seen = []

        async def scenario():
            store = SyncStore(backend)
            remove = store.add_listener(lambda snapshot, name: seen.append(name))
            await store.open(COUPLE_ID)
            await backend.insert(Table.GOALS, {"couple_id": COUPLE_ID, "title": "Trip"})
            remove()
            await backend.insert(Table.TASKS, {"couple_id": COUPLE_ID, "title": "Call bank"})

        asyncio.run(scenario())
        assert "goals" in seen
        assert "tasks" not in seen
