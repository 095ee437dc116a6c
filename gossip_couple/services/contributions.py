"""
Goal Contributions

Putting money toward a goal is two writes:
1. advance_goal: set the goal's current amount to old + contribution
2. record_expense: record the contribution as an expense transaction

DESIGN DECISION: The financially visible write (the expense) commits last,
and both writes are idempotent on retry:
- the goal amount is set to an absolute value computed once up front
- the expense carries an id generated up front and is upserted by it

If step 2 fails the goal has already moved. The recovery action is
retry(), which re-runs only the failed step.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.models.drafts import ContributionExpense
from gossip_couple.models.entities import Goal, TransactionType
from gossip_couple.services.saga import Saga, SagaStep, SagaStepError


CONTRIBUTION_CATEGORY = "Economia/Meta"

ADVANCE_GOAL = "advance_goal"
RECORD_EXPENSE = "record_expense"


class ContributionError(Exception):
    """Base exception for goal contributions."""
    pass


class InvalidContributionAmountError(ContributionError):
    """The amount is not a number or is not positive."""
    pass


class ContributionState(str, Enum):
    PENDING = "pending"
    GOAL_ADVANCED = "goal_advanced"
    COMPLETED = "completed"
    FAILED_ADVANCE_GOAL = "failed_advance_goal"
    FAILED_RECORD_EXPENSE = "failed_record_expense"


def parse_contribution_amount(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse a user-entered contribution amount.

    Accepts "200", "200.50" and "200,50".

    Raises:
        InvalidContributionAmountError: for empty, non-numeric or <= 0 input
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidContributionAmountError("Contribution amount is required")
    if isinstance(raw, str):
        text = raw.strip().replace(",", ".")
        if not text:
            raise InvalidContributionAmountError("Contribution amount is required")
    else:
        text = str(raw)
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise InvalidContributionAmountError(f"Not a number: {raw!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidContributionAmountError("Contribution amount must be positive")
    return amount


class ContributionSaga(Saga):
    """
    Contribute to a goal.

    Args:
        goal: the goal as currently shown in the snapshot
        amount: raw or parsed contribution amount
        advance_goal: called as advance_goal(goal_id, new_current_amount)
        record_expense: called as record_expense(ContributionExpense);
            receives exactly one expense per successful run

    Usage:
        saga = ContributionSaga(goal, "200", mutations.set_goal_amount, mutations.record_expense)
        try:
            await saga.run()
        except SagaStepError:
            ...
            await saga.retry()
    """

    name = "goal_contribution"

    def __init__(
        self,
        goal: Goal,
        amount: Any,
        advance_goal: Callable,
        record_expense: Callable,
        audit_logger: Optional[AuditLogger] = None,
        now: Optional[datetime] = None,
    ):
        self.goal = goal
        self.amount = parse_contribution_amount(amount)
        self.new_current_amount = goal.current_amount + self.amount
        self.expense = ContributionExpense(
            id=str(uuid4()),
            amount=self.amount,
            category=CONTRIBUTION_CATEGORY,
            description=f"Aporte: {goal.title}",
            type=TransactionType.EXPENSE,
            date=(now or datetime.now(timezone.utc)).isoformat(),
        )
        super().__init__(
            [
                SagaStep(ADVANCE_GOAL, lambda: advance_goal(goal.id, self.new_current_amount)),
                SagaStep(RECORD_EXPENSE, lambda: record_expense(self.expense)),
            ],
            audit_logger=audit_logger,
        )

    @property
    def state(self) -> ContributionState:
        if self.failed_step == ADVANCE_GOAL:
            return ContributionState.FAILED_ADVANCE_GOAL
        if self.failed_step == RECORD_EXPENSE:
            return ContributionState.FAILED_RECORD_EXPENSE
        if self.done:
            return ContributionState.COMPLETED
        if ADVANCE_GOAL in self.completed_steps:
            return ContributionState.GOAL_ADVANCED
        return ContributionState.PENDING


async def contribute_to_goal(
    goal: Goal,
    amount: Any,
    mutations,
    audit_logger: Optional[AuditLogger] = None,
) -> ContributionSaga:
    """
    Run a contribution against a MutationService.

    Raises:
        InvalidContributionAmountError: before anything is written
        SagaStepError: when a step fails; build the saga directly to keep
            a handle for retry()
    """
    saga = ContributionSaga(
        goal,
        amount,
        advance_goal=mutations.set_goal_amount,
        record_expense=mutations.record_expense,
        audit_logger=audit_logger,
    )
    await saga.run()
    return saga

