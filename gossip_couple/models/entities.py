"""
Core Entity Models for Gossip Couple

These are the application-level shapes the rest of the system works with.
They are produced from persisted rows by the mappers in
gossip_couple.sync.mappers and are never written back directly.

DESIGN DECISION: Field names are snake_case in Python and serialize to the
camelCase shape the clients expect (model_dump(by_alias=True)).
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class MemberSlot(str, Enum):
    """Which of the two household members a record belongs to."""
    USER1 = "user1"
    USER2 = "user2"


class Assignee(str, Enum):
    USER1 = "user1"
    USER2 = "user2"
    BOTH = "both"


class GoalStatus(str, Enum):
    """
    Goal progress status.

    NOTE: Nothing in the system moves a goal to ACHIEVED automatically,
    even when current_amount reaches target_amount.
    """
    IN_PROGRESS = "in-progress"
    ACHIEVED = "achieved"


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EventType(str, Enum):
    FINANCE = "finance"
    SOCIAL = "social"
    WORK = "work"
    TASK = "task"


class InvestmentType(str, Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    ETF = "etf"


class RiskTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MemberRole(str, Enum):
    """P1 pays and owns the couple, P2 joins through an invite."""
    P1 = "P1"
    P2 = "P2"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class Entity(BaseModel):
    """Base for all entity models."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# SYNCED COLLECTIONS
# =============================================================================

class Transaction(Entity):
    id: str
    amount: Decimal = Decimal("0")
    category: str = ""
    description: str = ""
    date: str = ""
    type: TransactionType = TransactionType.EXPENSE
    user_id: MemberSlot = MemberSlot.USER2


class Goal(Entity):
    id: str
    title: str = ""
    target_amount: Decimal = Decimal("0")
    current_amount: Decimal = Decimal("0")
    deadline: str = ""
    status: GoalStatus = GoalStatus.IN_PROGRESS
    category: str = ""
    description: Optional[str] = None


class Task(Entity):
    id: str
    title: str = ""
    assignee: Assignee = Assignee.BOTH
    deadline: str = ""
    completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    linked_goal_id: Optional[str] = None
    financial_impact: Decimal = Decimal("0")


class CalendarEvent(Entity):
    id: str
    title: str = ""
    start: str = ""
    end: str = ""
    type: EventType = EventType.SOCIAL
    description: Optional[str] = None
    value: Optional[Decimal] = None
    assignee: Optional[Assignee] = None
    linked_goal_id: Optional[str] = None
    synced: bool = False
    google_calendar_link: Optional[str] = None


class Contribution(Entity):
    date: str
    amount: Decimal


class Investment(Entity):
    """
    A portfolio position.

    NOTE: Positions are addressed by symbol, not by a stable identifier,
    so two lots of the same symbol cannot coexist in one couple's list.
    """
    symbol: str = ""
    name: str = ""
    price: Decimal = Decimal("0")
    change: Decimal = Decimal("0")
    change_percent: Decimal = Decimal("0")
    shares: Decimal = Decimal("0")
    type: InvestmentType = InvestmentType.STOCK
    description: Optional[str] = None
    total_invested: Optional[Decimal] = None
    linked_goal_id: Optional[str] = None
    contributions: list[Contribution] = Field(default_factory=list)


COLLECTION_NAMES = ("transactions", "goals", "tasks", "events", "investments")


class SyncSnapshot(BaseModel):
    """
    In-memory projection of the five synced collections.

    Snapshots are treated as immutable: every change produces a new
    snapshot through with_collection().
    """
    model_config = ConfigDict(frozen=True)

    transactions: tuple[Transaction, ...] = ()
    goals: tuple[Goal, ...] = ()
    tasks: tuple[Task, ...] = ()
    events: tuple[CalendarEvent, ...] = ()
    investments: tuple[Investment, ...] = ()

    def collection(self, name: str) -> tuple:
        if name not in COLLECTION_NAMES:
            raise KeyError(f"Unknown collection: {name}")
        return getattr(self, name)

    def with_collection(self, name: str, items) -> "SyncSnapshot":
        if name not in COLLECTION_NAMES:
            raise KeyError(f"Unknown collection: {name}")
        return self.model_copy(update={name: tuple(items)})

    def as_lists(self) -> dict[str, list]:
        return {name: list(getattr(self, name)) for name in COLLECTION_NAMES}


# =============================================================================
# PROFILE AGGREGATE
# =============================================================================

class UserDetail(Entity):
    name: str = ""
    email: str = ""
    monthly_income: str = ""
    income_receipt_date: str = ""


class CoupleProfile(Entity):
    """The household view: both members plus shared preferences."""
    user1: UserDetail = Field(default_factory=UserDetail)
    user2: UserDetail = Field(default_factory=UserDetail)
    couple_name: str = ""
    risk_tolerance: RiskTolerance = RiskTolerance.MEDIUM
    invite_link: Optional[str] = None


class Profile(Entity):
    id: str
    couple_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[MemberRole] = None
    monthly_income: Decimal = Decimal("0")
    income_receipt_date: Optional[int] = None
    risk_profile: Optional[RiskTolerance] = None
    onboarding_completed: bool = False
    avatar_url: Optional[str] = None


class Couple(Entity):
    id: str
    name: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    risk_profile: Optional[RiskTolerance] = None

    @property
    def subscription_active(self) -> bool:
        return self.subscription_status in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIALING,
        )
