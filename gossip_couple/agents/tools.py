"""
Assistant Tools

The closed set of tools the assistant may call, as:
1. Function declarations sent to the completion endpoint
2. Pydantic argument models that validate what the model sent back
3. Normalized drafts handed to the mutation callbacks

CRITICAL BOUNDARY: a missing required argument is rejected, never guessed.
Only the documented defaults are filled in:
- transaction: date -> now, description -> category
- goal: deadline -> now + goal_default_deadline_days
- task: deadline -> now, priority -> medium
- event: type -> social
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from gossip_couple.models.drafts import (
    EventDraft,
    GoalDraft,
    TaskDraft,
    TransactionDraft,
)
from gossip_couple.models.entities import (
    Assignee,
    EventType,
    TaskPriority,
    TransactionType,
)


CREATE_TRANSACTION = "createTransaction"
CREATE_GOAL = "createGoal"
CREATE_TASK = "createTask"
CREATE_EVENT = "createEvent"
GET_INVESTMENT_ADVICE = "getInvestmentAdvice"


class ToolArgumentError(Exception):
    """A tool invocation is missing required arguments or carries invalid ones."""

    def __init__(
        self,
        tool: str,
        missing: Optional[list[str]] = None,
        invalid: Optional[list[str]] = None,
    ):
        self.tool = tool
        self.missing = missing or []
        self.invalid = invalid or []
        parts = []
        if self.missing:
            parts.append(f"missing {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid {', '.join(self.invalid)}")
        super().__init__(f"{tool}: {'; '.join(parts) or 'invalid arguments'}")


# =============================================================================
# DECLARATIONS (sent to the model)
# =============================================================================

FUNCTION_DECLARATIONS = [
    {
        "name": CREATE_TRANSACTION,
        "description": "Log a new financial transaction (expense or income) for the couple.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "amount": {"type": "NUMBER", "description": "The amount of money."},
                "category": {"type": "STRING", "description": "Category like Food, Rent, Travel, Salary."},
                "description": {"type": "STRING", "description": "Short description of the transaction."},
                "type": {"type": "STRING", "enum": ["income", "expense"], "description": "Is it income or expense?"},
                "date": {"type": "STRING", "description": "ISO date string (YYYY-MM-DD)."},
            },
            "required": ["amount", "category", "type"],
        },
    },
    {
        "name": CREATE_GOAL,
        "description": "Create a new financial goal for the couple.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "title": {"type": "STRING", "description": "Name of the goal, e.g., Trip to Japan."},
                "targetAmount": {"type": "NUMBER", "description": "Target amount to save."},
                "deadline": {"type": "STRING", "description": "Target date ISO string (YYYY-MM-DD)."},
            },
            "required": ["title", "targetAmount"],
        },
    },
    {
        "name": CREATE_TASK,
        "description": "Assign a task to a partner.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "title": {"type": "STRING", "description": "Task description."},
                "assignee": {"type": "STRING", "enum": ["user1", "user2", "both"], "description": "Who is responsible."},
                "deadline": {"type": "STRING", "description": "Due date ISO string."},
                "linkedGoalId": {"type": "STRING", "description": "The ID of the goal this task is linked to, if any."},
                "priority": {"type": "STRING", "enum": ["high", "medium", "low"], "description": "Priority of the task."},
            },
            "required": ["title", "assignee"],
        },
    },
    {
        "name": CREATE_EVENT,
        "description": "Schedule an event in the shared calendar.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "title": {"type": "STRING", "description": "Event title."},
                "start": {"type": "STRING", "description": "Start ISO string."},
                "end": {"type": "STRING", "description": "End ISO string."},
                "type": {"type": "STRING", "enum": ["finance", "social", "work", "task"], "description": "Type of event."},
            },
            "required": ["title", "start", "end"],
        },
    },
    {
        "name": GET_INVESTMENT_ADVICE,
        "description": "Get general investment advice based on risk profile.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "query": {"type": "STRING", "description": "Specific question or topic."},
            },
        },
    },
]


# =============================================================================
# ARGUMENTS (what the model sent)
# =============================================================================

class _Args(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class TransactionArgs(_Args):
    amount: Decimal = Field(gt=0)
    category: str = Field(min_length=1)
    type: TransactionType
    description: Optional[str] = None
    date: Optional[str] = None


class GoalArgs(_Args):
    title: str = Field(min_length=1)
    target_amount: Decimal = Field(gt=0)
    deadline: Optional[str] = None


class TaskArgs(_Args):
    title: str = Field(min_length=1)
    assignee: Assignee
    deadline: Optional[str] = None
    linked_goal_id: Optional[str] = None
    priority: Optional[TaskPriority] = None


class EventArgs(_Args):
    title: str = Field(min_length=1)
    start: str = Field(min_length=1)
    end: str = Field(min_length=1)
    type: Optional[EventType] = None


class AdviceArgs(_Args):
    query: Optional[str] = None


class ToolSpec(NamedTuple):
    name: str
    action: str
    args_model: type[_Args]


TOOL_SPECS: dict[str, ToolSpec] = {
    CREATE_TRANSACTION: ToolSpec(CREATE_TRANSACTION, "register the transaction", TransactionArgs),
    CREATE_GOAL: ToolSpec(CREATE_GOAL, "create the goal", GoalArgs),
    CREATE_TASK: ToolSpec(CREATE_TASK, "create the task", TaskArgs),
    CREATE_EVENT: ToolSpec(CREATE_EVENT, "add the event", EventArgs),
    GET_INVESTMENT_ADVICE: ToolSpec(GET_INVESTMENT_ADVICE, "get investment advice", AdviceArgs),
}


def _field_name(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "arguments"


def validate_args(tool: str, args: dict) -> _Args:
    """
    Validate raw model arguments against the tool's argument model.

    Raises:
        ToolArgumentError: listing missing and invalid fields by schema name
        KeyError: for a tool outside the declared set
    """
    spec = TOOL_SPECS[tool]
    # The model sometimes sends explicit nulls for required fields
    cleaned = {k: v for k, v in (args or {}).items() if v is not None}
    try:
        return spec.args_model.model_validate(cleaned)
    except ValidationError as e:
        missing, invalid = [], []
        for error in e.errors():
            name = _field_name(error["loc"])
            if error["type"] == "missing":
                missing.append(name)
            elif name not in invalid:
                invalid.append(name)
        raise ToolArgumentError(tool, missing=missing, invalid=invalid)


def normalize(
    tool: str,
    args: _Args,
    now: Optional[datetime] = None,
    goal_deadline_days: int = 30,
):
    """Turn validated arguments into the draft handed to the callback."""
    now = now or datetime.now(timezone.utc)

    if isinstance(args, TransactionArgs):
        return TransactionDraft(
            amount=args.amount,
            category=args.category,
            description=args.description or args.category,
            type=args.type,
            date=args.date or now.isoformat(),
        )
    if isinstance(args, GoalArgs):
        return GoalDraft(
            title=args.title,
            target_amount=args.target_amount,
            deadline=args.deadline or (now + timedelta(days=goal_deadline_days)).isoformat(),
        )
    if isinstance(args, TaskArgs):
        return TaskDraft(
            title=args.title,
            assignee=args.assignee,
            deadline=args.deadline or now.isoformat(),
            priority=args.priority or TaskPriority.MEDIUM,
            linked_goal_id=args.linked_goal_id,
        )
    if isinstance(args, EventArgs):
        return EventDraft(
            title=args.title,
            start=args.start,
            end=args.end,
            type=args.type or EventType.SOCIAL,
        )
    raise ValueError(f"{tool} has no mutation draft")
