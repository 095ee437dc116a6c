"""
Assistant Context

Builds the bounded grounding block the assistant sees on every turn:
the running balance over the full transaction history, the most recent
transactions and the goals still in progress. The snapshot is only read.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from gossip_couple.models.entities import (
    CoupleProfile,
    Goal,
    GoalStatus,
    SyncSnapshot,
    Transaction,
    TransactionType,
)


class AssistantContext(BaseModel):
    """Read-only summary of a couple's state for one assistant turn."""

    balance: Decimal = Decimal("0")
    recent_transactions: list[Transaction] = Field(default_factory=list)
    active_goals: list[Goal] = Field(default_factory=list)
    user1_name: str = "Partner 1"
    user2_name: str = "Partner 2"
    today: date = Field(default_factory=date.today)


def running_balance(transactions) -> Decimal:
    """Income minus expenses over every transaction given."""
    total = Decimal("0")
    for transaction in transactions:
        if transaction.type == TransactionType.INCOME:
            total += transaction.amount
        else:
            total -= transaction.amount
    return total


def build_context(
    snapshot: SyncSnapshot,
    profile: Optional[CoupleProfile] = None,
    recent_limit: int = 5,
    today: Optional[date] = None,
) -> AssistantContext:
    # Transactions arrive date-descending from the sync store
    recent = list(snapshot.transactions[:recent_limit]) if recent_limit > 0 else []
    return AssistantContext(
        balance=running_balance(snapshot.transactions),
        recent_transactions=recent,
        active_goals=[g for g in snapshot.goals if g.status == GoalStatus.IN_PROGRESS],
        user1_name=(profile.user1.name if profile and profile.user1.name else "Partner 1"),
        user2_name=(profile.user2.name if profile and profile.user2.name else "Partner 2"),
        today=today or date.today(),
    )


def format_amount(value) -> str:
    """Render money without a trailing fraction for whole numbers (150, 12.5)."""
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), "f")


def render_system_instruction(context: AssistantContext) -> str:
    """The fixed assistant instruction with the context block filled in."""
    if context.recent_transactions:
        recent = ", ".join(
            f"{t.category}: ${format_amount(t.amount)} ({t.type.value})"
            for t in context.recent_transactions
        )
    else:
        recent = "none"

    if context.active_goals:
        goals = "; ".join(
            f"{g.title} (id {g.id}, current ${format_amount(g.current_amount)}"
            f" of ${format_amount(g.target_amount)})"
            for g in context.active_goals
        )
    else:
        goals = "none"

    return f"""You are a sophisticated AI financial planner for a couple ({context.user1_name} and {context.user2_name}).
Your goal is to manage their finances, calendar, and tasks.
Current Date: {context.today.isoformat()}

Current Financial State:
- Balance (all income minus all expenses): ${format_amount(context.balance)}
- Active Goals: {goals}
- Recent Transactions: {recent}

Tone: Professional, minimalist, tech-forward, helpful.

When the user asks to perform an action, call the appropriate tool.
If the user asks about investments, call getInvestmentAdvice or answer generally."""
