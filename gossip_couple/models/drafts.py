"""
Mutation Drafts

The normalized payloads handed to the write side, whether they come
from a form or from an assistant tool call. They carry no id: the
backend assigns one, except for ContributionExpense, whose id is fixed
up front so re-recording it is idempotent.
"""

from decimal import Decimal
from typing import Optional

from gossip_couple.models.entities import (
    Assignee,
    Entity,
    EventType,
    TaskPriority,
    TransactionType,
)


class TransactionDraft(Entity):
    amount: Decimal
    category: str
    description: str
    type: TransactionType
    date: str


class ContributionExpense(TransactionDraft):
    """The expense recorded by a goal contribution."""
    id: str


class GoalDraft(Entity):
    title: str
    target_amount: Decimal
    deadline: str
    category: str = ""
    description: Optional[str] = None


class TaskDraft(Entity):
    title: str
    assignee: Assignee
    deadline: str
    priority: TaskPriority = TaskPriority.MEDIUM
    linked_goal_id: Optional[str] = None
    financial_impact: Optional[Decimal] = None


class EventDraft(Entity):
    title: str
    start: str
    end: str
    type: EventType = EventType.SOCIAL
    description: Optional[str] = None
    value: Optional[Decimal] = None
    assignee: Optional[Assignee] = None
    linked_goal_id: Optional[str] = None
