"""
Data Models Package

Pydantic models for persisted rows, application entities and audit events.
"""

from gossip_couple.models.entities import (
    Assignee,
    CalendarEvent,
    Contribution,
    Couple,
    CoupleProfile,
    EventType,
    Goal,
    GoalStatus,
    Investment,
    InvestmentType,
    InviteStatus,
    MemberRole,
    MemberSlot,
    Profile,
    RiskTolerance,
    SubscriptionStatus,
    SyncSnapshot,
    Task,
    TaskPriority,
    Transaction,
    TransactionType,
    UserDetail,
)
from gossip_couple.models.drafts import (
    ContributionExpense,
    EventDraft,
    GoalDraft,
    TaskDraft,
    TransactionDraft,
)
from gossip_couple.models.rows import (
    CoupleRow,
    EventRow,
    GoalRow,
    InvestmentRow,
    InviteRow,
    ProfileRow,
    TaskRow,
    TransactionRow,
)
from gossip_couple.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entities
    "Assignee",
    "CalendarEvent",
    "Contribution",
    "Couple",
    "CoupleProfile",
    "EventType",
    "Goal",
    "GoalStatus",
    "Investment",
    "InvestmentType",
    "InviteStatus",
    "MemberRole",
    "MemberSlot",
    "Profile",
    "RiskTolerance",
    "SubscriptionStatus",
    "SyncSnapshot",
    "Task",
    "TaskPriority",
    "Transaction",
    "TransactionType",
    "UserDetail",
    # Drafts
    "ContributionExpense",
    "EventDraft",
    "GoalDraft",
    "TaskDraft",
    "TransactionDraft",
    # Rows
    "CoupleRow",
    "EventRow",
    "GoalRow",
    "InvestmentRow",
    "InviteRow",
    "ProfileRow",
    "TaskRow",
    "TransactionRow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
