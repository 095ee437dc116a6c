"""
Assistant Tool Dispatcher

One conversational turn:
1. Build the context block from the snapshot (read-only)
2. Ask the completion endpoint, with the five tool declarations
3. For each tool invocation, in the order returned:
   validate -> normalize -> call the matching mutation callback
4. Reply with one fixed confirmation sentence per invocation

CRITICAL BOUNDARIES:
- The dispatcher never writes. All mutation goes through the callbacks.
- Confirmation text is deterministic, never model-authored.
- A failing callback is logged and reported; later invocations still run.
- Model and network failures become a fixed apology, never an exception.
- One turn at a time per conversation. Other conversations are not blocked.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from gossip_couple.agents.advisor import InvestmentAdvisor
from gossip_couple.agents.completion import (
    AssistantTimeoutError,
    CompletionClient,
    CompletionResult,
    ToolInvocation,
)
from gossip_couple.agents.context import (
    build_context,
    format_amount,
    render_system_instruction,
)
from gossip_couple.agents.tools import (
    CREATE_EVENT,
    CREATE_GOAL,
    CREATE_TASK,
    CREATE_TRANSACTION,
    FUNCTION_DECLARATIONS,
    GET_INVESTMENT_ADVICE,
    TOOL_SPECS,
    ToolArgumentError,
    normalize,
    validate_args,
)
from gossip_couple.audit.logger import AuditLogger, create_correlation_id
from gossip_couple.models.entities import CoupleProfile, GoalStatus, SyncSnapshot

logger = structlog.get_logger(__name__)


FALLBACK_REPLY = "I encountered an error processing your request."
EMPTY_REPLY = "Action processed."


class TurnInProgressError(Exception):
    """A turn was started while the conversation's previous turn is still running."""
    pass


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    DISPATCHING = "dispatching"
    REPLYING = "replying"


class OutcomeStatus(str, Enum):
    DISPATCHED = "dispatched"
    REJECTED = "rejected"
    FAILED = "failed"
    ANSWERED = "answered"


class ToolOutcome(BaseModel):
    """What happened to one tool invocation."""
    tool: str
    status: OutcomeStatus
    message: str
    payload: Optional[dict[str, Any]] = None


class AssistantReply(BaseModel):
    text: str
    outcomes: list[ToolOutcome] = Field(default_factory=list)
    error_kind: Optional[str] = None


class AssistantCallbacks:
    """
    Mutation callbacks owned by the caller.

    Each may be a plain function or a coroutine function and receives the
    normalized draft for its tool.
    """

    def __init__(
        self,
        on_transaction: Optional[Callable] = None,
        on_goal: Optional[Callable] = None,
        on_task: Optional[Callable] = None,
        on_event: Optional[Callable] = None,
    ):
        self.on_transaction = on_transaction
        self.on_goal = on_goal
        self.on_task = on_task
        self.on_event = on_event

    def for_tool(self, tool: str) -> Optional[Callable]:
        return {
            CREATE_TRANSACTION: self.on_transaction,
            CREATE_GOAL: self.on_goal,
            CREATE_TASK: self.on_task,
            CREATE_EVENT: self.on_event,
        }.get(tool)


def confirmation_for(tool: str, draft) -> str:
    """The fixed confirmation sentence for a dispatched tool."""
    if tool == CREATE_TRANSACTION:
        return (
            f"I've registered a {draft.type.value} of ${format_amount(draft.amount)}"
            f" for {draft.category}."
        )
    if tool == CREATE_GOAL:
        return (
            f"New goal created: {draft.title} with a target of"
            f" ${format_amount(draft.target_amount)}."
        )
    if tool == CREATE_TASK:
        return f"Task assigned to {draft.assignee.value}: {draft.title}."
    if tool == CREATE_EVENT:
        return f'Added "{draft.title}" to your calendar.'
    raise ValueError(f"No confirmation for {tool}")


def rejection_for(error: ToolArgumentError) -> str:
    action = TOOL_SPECS[error.tool].action
    if error.missing:
        return f"I couldn't {action}: missing {', '.join(error.missing)}."
    return f"I couldn't {action}: invalid {', '.join(error.invalid)}."


class AssistantDispatcher:
    """
    Maps model tool calls onto caller-owned mutation callbacks.

    Usage:
        dispatcher = AssistantDispatcher(GeminiCompletionClient(), advisor)
        reply = await dispatcher.converse(
            "Gastei 150 no Jantar", couple_id, store.snapshot, callbacks
        )
    """

    def __init__(
        self,
        completion: CompletionClient,
        advisor: Optional[InvestmentAdvisor] = None,
        audit_logger: Optional[AuditLogger] = None,
        timeout_seconds: float = 30.0,
        temperature: float = 0.7,
        recent_limit: int = 5,
        goal_deadline_days: int = 30,
    ):
        self._completion = completion
        self._advisor = advisor
        self._audit = audit_logger or AuditLogger()
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._recent_limit = recent_limit
        self._goal_deadline_days = goal_deadline_days
        self._locks: dict[str, asyncio.Lock] = {}
        self._states: dict[str, TurnState] = {}

    def turn_state(self, conversation_id: str = "default") -> TurnState:
        return self._states.get(conversation_id, TurnState.IDLE)

    async def converse(
        self,
        utterance: str,
        couple_id: Optional[str],
        snapshot: SyncSnapshot,
        callbacks: AssistantCallbacks,
        profile: Optional[CoupleProfile] = None,
        conversation_id: str = "default",
    ) -> AssistantReply:
        """
        Run one turn.

        Raises:
            TurnInProgressError: if this conversation already has a turn running
        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        if lock.locked():
            raise TurnInProgressError(
                f"Conversation {conversation_id} already has a turn in progress"
            )

        async with lock:
            try:
                return await self._run_turn(
                    utterance, couple_id, snapshot, callbacks, profile, conversation_id
                )
            finally:
                self._states[conversation_id] = TurnState.IDLE

    async def _run_turn(
        self,
        utterance: str,
        couple_id: Optional[str],
        snapshot: SyncSnapshot,
        callbacks: AssistantCallbacks,
        profile: Optional[CoupleProfile],
        conversation_id: str,
    ) -> AssistantReply:
        correlation_id = create_correlation_id()
        context = build_context(snapshot, profile, recent_limit=self._recent_limit)

        self._states[conversation_id] = TurnState.SENDING
        try:
            result: CompletionResult = await asyncio.wait_for(
                self._completion.complete(
                    utterance,
                    render_system_instruction(context),
                    tools=FUNCTION_DECLARATIONS,
                    temperature=self._temperature,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, AssistantTimeoutError) as e:
            return await self._fallback(couple_id, "timeout", str(e) or "timed out", correlation_id)
        except Exception as e:
            return await self._fallback(couple_id, "completion_failed", str(e), correlation_id)

        if not result.invocations:
            self._states[conversation_id] = TurnState.REPLYING
            return AssistantReply(text=result.text or EMPTY_REPLY)

        self._states[conversation_id] = TurnState.DISPATCHING
        outcomes = []
        for invocation in result.invocations:
            outcomes.append(
                await self._dispatch(
                    invocation, couple_id, snapshot, callbacks, profile, correlation_id
                )
            )

        self._states[conversation_id] = TurnState.REPLYING
        return AssistantReply(
            text=" ".join(o.message for o in outcomes if o.message),
            outcomes=outcomes,
        )

    async def _fallback(
        self,
        couple_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AssistantReply:
        logger.error("assistant_turn_failed", error_kind=error_kind, error=error_message)
        await self._audit.log_assistant_fallback(
            couple_id, error_kind, error_message, correlation_id
        )
        return AssistantReply(text=FALLBACK_REPLY, error_kind=error_kind)

    async def _dispatch(
        self,
        invocation: ToolInvocation,
        couple_id: Optional[str],
        snapshot: SyncSnapshot,
        callbacks: AssistantCallbacks,
        profile: Optional[CoupleProfile],
        correlation_id: UUID,
    ) -> ToolOutcome:
        tool = invocation.name

        if tool not in TOOL_SPECS:
            await self._audit.log_tool_rejected(couple_id, tool, "unknown tool", correlation_id)
            return ToolOutcome(
                tool=tool,
                status=OutcomeStatus.REJECTED,
                message=f"I don't know how to {tool}.",
            )

        try:
            args = validate_args(tool, invocation.args)
        except ToolArgumentError as e:
            await self._audit.log_tool_rejected(couple_id, tool, str(e), correlation_id)
            return ToolOutcome(tool=tool, status=OutcomeStatus.REJECTED, message=rejection_for(e))

        if tool == GET_INVESTMENT_ADVICE:
            return await self._advise(args.query, snapshot, profile)

        action = TOOL_SPECS[tool].action
        callback = callbacks.for_tool(tool)
        draft = normalize(tool, args, goal_deadline_days=self._goal_deadline_days)
        payload = draft.model_dump(mode="json")

        if callback is None:
            await self._audit.log_tool_rejected(couple_id, tool, "no callback", correlation_id)
            return ToolOutcome(
                tool=tool,
                status=OutcomeStatus.REJECTED,
                message=f"I can't {action} from here.",
                payload=payload,
            )

        try:
            outcome = callback(draft)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error("tool_callback_failed", tool=tool, error=str(e))
            await self._audit.log_tool_failed(couple_id, tool, str(e), correlation_id)
            return ToolOutcome(
                tool=tool,
                status=OutcomeStatus.FAILED,
                message=f"Something went wrong while trying to {action}.",
                payload=payload,
            )

        await self._audit.log_tool_dispatched(couple_id, tool, payload, correlation_id)
        return ToolOutcome(
            tool=tool,
            status=OutcomeStatus.DISPATCHED,
            message=confirmation_for(tool, draft),
            payload=payload,
        )

    async def _advise(
        self,
        query: Optional[str],
        snapshot: SyncSnapshot,
        profile: Optional[CoupleProfile],
    ) -> ToolOutcome:
        if self._advisor is None:
            return ToolOutcome(
                tool=GET_INVESTMENT_ADVICE,
                status=OutcomeStatus.REJECTED,
                message="Investment advice is not available right now.",
            )
        goals = [g for g in snapshot.goals if g.status == GoalStatus.IN_PROGRESS]
        reply = await self._advisor.chat(
            query or "Give us general investment advice for our profile.",
            profile,
            goals,
        )
        return ToolOutcome(
            tool=GET_INVESTMENT_ADVICE,
            status=OutcomeStatus.ANSWERED,
            message=reply.text,
        )
