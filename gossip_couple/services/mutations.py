"""
Mutation Service

The write side of the app. Every form submit and every assistant tool
call ends up here, as an insert or update against the couple's tables.

DESIGN DECISION: Writes never touch the sync snapshot. The change feed
delivers the new row back to the store, so a successful write is
"eventually visible", not "immediately visible".

TRADEOFFS:
- No automatic retries: a duplicate insert costs more than a failed one
- Failures are audited, then re-raised to the caller
"""

from decimal import Decimal
from typing import Optional

import structlog

from gossip_couple.agents.dispatcher import AssistantCallbacks
from gossip_couple.audit.logger import AuditLogger
from gossip_couple.auth.context import MissingScopeError
from gossip_couple.models.drafts import (
    ContributionExpense,
    EventDraft,
    GoalDraft,
    TaskDraft,
    TransactionDraft,
)
from gossip_couple.models.entities import EventType, GoalStatus
from gossip_couple.services.calendar import (
    CalendarSyncResult,
    GoogleCalendarService,
    build_calendar_link,
)
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


DEFAULT_GOAL_CATEGORY = "Finance"
DEFAULT_GOAL_DESCRIPTION = "Created via AI Assistant"


def to_column(value: Optional[Decimal]) -> Optional[float]:
    """Numeric columns go over the wire as JSON numbers."""
    return float(value) if value is not None else None


def task_event_window(deadline: str) -> tuple[str, str]:
    """The 09:00-10:00 slot a task occupies on its due day."""
    day = deadline[:10]
    return f"{day}T09:00:00", f"{day}T10:00:00"


class MutationService:
    """
    Scoped writes for one couple.

    Args:
        repository: user-scoped repository
        couple_id: the couple every write belongs to
        user_id: the signed-in member (recorded on transactions, used for
            calendar mirroring)
        calendar: optional calendar service; without one, event sync
            degrades straight to the generated link
    """

    def __init__(
        self,
        repository: CoupleRepository,
        couple_id: Optional[str],
        user_id: Optional[str] = None,
        calendar: Optional[GoogleCalendarService] = None,
        audit_logger: Optional[AuditLogger] = None,
        couple_name: str = "",
    ):
        if not couple_id:
            raise MissingScopeError("Writes require a couple scope")
        self._repository = repository
        self.couple_id = couple_id
        self.user_id = user_id
        self._calendar = calendar
        self._audit = audit_logger or AuditLogger()
        self._couple_name = couple_name

    async def _insert(self, table: Table, record: dict) -> dict:
        try:
            row = await self._repository.insert(table, record)
        except Exception as e:
            await self._audit.log_save_failed(self.couple_id, table.value, str(e))
            raise
        await self._audit.log_record_saved(self.couple_id, table.value, row.get("id"))
        return row

    async def _update(self, table: Table, filters: dict, changes: dict) -> list[dict]:
        try:
            rows = await self._repository.update(
                table, {**filters, "couple_id": self.couple_id}, changes
            )
        except Exception as e:
            await self._audit.log_save_failed(self.couple_id, table.value, str(e))
            raise
        for row in rows:
            await self._audit.log_record_saved(self.couple_id, table.value, row.get("id"))
        return rows

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, draft: TransactionDraft) -> dict:
        record = {
            "couple_id": self.couple_id,
            "user_id": self.user_id,
            "amount": to_column(draft.amount),
            "category": draft.category,
            "description": draft.description,
            "type": draft.type.value,
            "date": draft.date,
        }
        if isinstance(draft, ContributionExpense):
            record["id"] = draft.id
        return await self._insert(Table.TRANSACTIONS, record)

    async def record_expense(self, expense: ContributionExpense) -> dict:
        """
        Write an expense under its pre-assigned id.

        Upserting by id makes a retried write land on the same row.
        """
        record = {
            "id": expense.id,
            "couple_id": self.couple_id,
            "user_id": self.user_id,
            "amount": to_column(expense.amount),
            "category": expense.category,
            "description": expense.description,
            "type": expense.type.value,
            "date": expense.date,
        }
        try:
            row = await self._repository.upsert(Table.TRANSACTIONS, record, on_conflict="id")
        except Exception as e:
            await self._audit.log_save_failed(self.couple_id, Table.TRANSACTIONS.value, str(e))
            raise
        await self._audit.log_record_saved(self.couple_id, Table.TRANSACTIONS.value, expense.id)
        return row

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    async def add_goal(self, draft: GoalDraft) -> dict:
        return await self._insert(Table.GOALS, {
            "couple_id": self.couple_id,
            "title": draft.title,
            "target_amount": to_column(draft.target_amount),
            "current_amount": 0,
            "deadline": draft.deadline,
            "status": GoalStatus.IN_PROGRESS.value,
            "category": draft.category or DEFAULT_GOAL_CATEGORY,
            "description": draft.description or DEFAULT_GOAL_DESCRIPTION,
        })

    async def set_goal_amount(self, goal_id: str, current_amount: Decimal) -> dict:
        """
        Set a goal's current amount to an absolute value.

        NOTE: status is left alone even when the target is reached.
        """
        rows = await self._update(
            Table.GOALS,
            {"id": goal_id},
            {"current_amount": to_column(current_amount)},
        )
        if not rows:
            raise LookupError(f"Goal {goal_id} not found")
        return rows[0]

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def add_task(self, draft: TaskDraft, add_to_calendar: bool = False) -> dict:
        """Insert a task, optionally with a synced calendar slot on its due day."""
        row = await self._insert(Table.TASKS, {
            "couple_id": self.couple_id,
            "title": draft.title,
            "assignee_id": None,
            "deadline": draft.deadline,
            "completed": False,
            "priority": draft.priority.value,
            "linked_goal_id": draft.linked_goal_id,
            "financial_impact": to_column(draft.financial_impact),
        })
        if add_to_calendar:
            start, end = task_event_window(draft.deadline)
            await self.add_event(
                EventDraft(
                    title=draft.title,
                    start=start,
                    end=end,
                    type=EventType.TASK,
                    assignee=draft.assignee,
                    description="Linked Task",
                ),
                sync=True,
            )
        return row

    async def complete_task(self, task_id: str, completed: bool = True) -> list[dict]:
        return await self._update(Table.TASKS, {"id": task_id}, {"completed": completed})

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def add_event(self, draft: EventDraft, sync: bool = False) -> tuple[dict, Optional[CalendarSyncResult]]:
        """
        Insert an event, mirroring it to the member's calendar when asked.

        A failed mirror never blocks the insert; the result then carries
        synced=False and the manual link. Without a calendar service the
        manual link is returned straight away. No sync requested, no result.
        """
        result = None
        if sync:
            if self._calendar is not None:
                result = await self._calendar.sync_event(self.user_id, draft, self._couple_name)
            else:
                result = CalendarSyncResult(
                    synced=False, link=build_calendar_link(draft, self._couple_name)
                )
            if not result.synced:
                logger.info("event_saved_unsynced", couple_id=self.couple_id, title=draft.title)

        row = await self._insert(Table.EVENTS, {
            "couple_id": self.couple_id,
            "title": draft.title,
            "start_time": draft.start,
            "end_time": draft.end,
            "type": draft.type.value,
            "google_event_id": result.google_event_id if result else None,
            "assignee_id": None,
        })
        return row, result

    # -------------------------------------------------------------------------
    # Assistant wiring
    # -------------------------------------------------------------------------

    def callbacks(self) -> AssistantCallbacks:
        """Callbacks for the assistant. Assistant-created events are synced."""

        async def on_event(draft: EventDraft) -> dict:
            row, _ = await self.add_event(draft, sync=True)
            return row

        return AssistantCallbacks(
            on_transaction=self.add_transaction,
            on_goal=self.add_goal,
            on_task=self.add_task,
            on_event=on_event,
        )
