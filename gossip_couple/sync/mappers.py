"""
Entity Mappers

Pure functions turning a persisted row into an application entity.
Each mapper accepts a typed row model or a raw dict (decoded through the
row model first) and fills documented defaults for null columns.

Pinned mapping behavior (kept deliberately, covered by tests):
- Transaction.user_id only records whether a member reference exists:
  present maps to user1, absent to user2.
- Task.assignee is always "both"; the stored assignee_id is discarded.
- Investment.change and change_percent are always 0; day change is
  fetched separately.
- Goal.status is copied as stored and never derived from the amounts.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional, TypeVar, Union

from gossip_couple.models.entities import (
    Assignee,
    CalendarEvent,
    Couple,
    EventType,
    Goal,
    GoalStatus,
    Investment,
    InvestmentType,
    MemberRole,
    MemberSlot,
    Profile,
    RiskTolerance,
    SubscriptionStatus,
    Task,
    TaskPriority,
    Transaction,
    TransactionType,
)
from gossip_couple.models.rows import (
    CoupleRow,
    EventRow,
    GoalRow,
    InvestmentRow,
    ProfileRow,
    TaskRow,
    TransactionRow,
)

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value: Any, default: E) -> E:
    """Return enum_cls(value), or default for null or unknown values."""
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _optional_enum(enum_cls: type[E], value: Any) -> Optional[E]:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _money(value: Optional[Decimal]) -> Decimal:
    return value if value is not None else Decimal("0")


def map_transaction(raw: Union[TransactionRow, dict]) -> Transaction:
    row = TransactionRow.decode(raw)
    return Transaction(
        id=row.id,
        amount=_money(row.amount),
        category=row.category or "",
        description=row.description or "",
        date=row.date or "",
        type=coerce_enum(TransactionType, row.type, TransactionType.EXPENSE),
        user_id=MemberSlot.USER1 if row.user_id else MemberSlot.USER2,
    )


def map_goal(raw: Union[GoalRow, dict]) -> Goal:
    row = GoalRow.decode(raw)
    return Goal(
        id=row.id,
        title=row.title or "",
        target_amount=_money(row.target_amount),
        current_amount=_money(row.current_amount),
        deadline=row.deadline or "",
        status=coerce_enum(GoalStatus, row.status, GoalStatus.IN_PROGRESS),
        category=row.category or "",
        description=row.description or None,
    )


def map_task(raw: Union[TaskRow, dict]) -> Task:
    row = TaskRow.decode(raw)
    return Task(
        id=row.id,
        title=row.title or "",
        assignee=Assignee.BOTH,
        deadline=row.deadline or "",
        completed=bool(row.completed),
        priority=coerce_enum(TaskPriority, row.priority, TaskPriority.MEDIUM),
        linked_goal_id=row.linked_goal_id or None,
        financial_impact=_money(row.financial_impact),
    )


def map_event(raw: Union[EventRow, dict]) -> CalendarEvent:
    row = EventRow.decode(raw)
    return CalendarEvent(
        id=row.id,
        title=row.title or "",
        start=row.start_time or "",
        end=row.end_time or "",
        type=coerce_enum(EventType, row.type, EventType.SOCIAL),
        synced=bool(row.google_event_id),
        assignee=Assignee.BOTH,
    )


def map_investment(raw: Union[InvestmentRow, dict]) -> Investment:
    row = InvestmentRow.decode(raw)
    quantity = _money(row.quantity)
    return Investment(
        symbol=row.symbol or "",
        name=row.name or "",
        price=_money(row.current_price),
        change=Decimal("0"),
        change_percent=Decimal("0"),
        shares=quantity,
        type=InvestmentType.STOCK,
        total_invested=quantity * _money(row.purchase_price),
    )


def map_profile(raw: Union[ProfileRow, dict]) -> Profile:
    row = ProfileRow.decode(raw)
    receipt_day = row.income_receipt_day
    if receipt_day is None:
        receipt_day = row.income_date
    return Profile(
        id=row.id,
        couple_id=row.couple_id,
        name=row.full_name,
        email=row.email,
        role=_optional_enum(MemberRole, row.role),
        monthly_income=_money(row.monthly_income),
        income_receipt_date=receipt_day,
        risk_profile=_optional_enum(RiskTolerance, row.risk_profile),
        onboarding_completed=bool(row.onboarding_completed),
        avatar_url=row.avatar_url,
    )


def map_couple(raw: Union[CoupleRow, dict]) -> Couple:
    row = CoupleRow.decode(raw)
    return Couple(
        id=row.id,
        name=row.name,
        subscription_status=coerce_enum(
            SubscriptionStatus, row.subscription_status, SubscriptionStatus.INACTIVE
        ),
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        risk_profile=_optional_enum(RiskTolerance, row.financial_risk_profile),
    )
