"""
Tests for the assistant: context, tool validation, dispatcher, advisor.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from gossip_couple.agents.advisor import ADVISOR_FALLBACK, InvestmentAdvisor
from gossip_couple.agents.completion import CompletionError, CompletionResult, parse_response
from gossip_couple.agents.context import (
    build_context,
    format_amount,
    render_system_instruction,
    running_balance,
)
from gossip_couple.agents.dispatcher import (
    EMPTY_REPLY,
    FALLBACK_REPLY,
    AssistantCallbacks,
    AssistantDispatcher,
    OutcomeStatus,
    TurnInProgressError,
)
from gossip_couple.agents.tools import (
    CREATE_EVENT,
    CREATE_GOAL,
    CREATE_TASK,
    CREATE_TRANSACTION,
    GET_INVESTMENT_ADVICE,
    ToolArgumentError,
    normalize,
    validate_args,
)
from gossip_couple.models.entities import (
    EventType,
    Goal,
    GoalStatus,
    SyncSnapshot,
    TaskPriority,
    Transaction,
    TransactionType,
)
from gossip_couple.services.mutations import MutationService
from gossip_couple.sync.store import SyncStore

from conftest import COUPLE_ID, USER_ID, FakeCompletionClient, tool_calls


def snapshot_with(transactions=(), goals=()):
    return SyncSnapshot(transactions=tuple(transactions), goals=tuple(goals))


class Recorder:
    """Callback that records drafts, optionally failing."""

    def __init__(self, fail=False):
        self.fail = fail
        self.drafts = []

    async def __call__(self, draft):
        if self.fail:
            raise RuntimeError("backend down")
        self.drafts.append(draft)


class TestAssistantContext:
    """Tests for the grounding block."""

    def test_balance_over_full_history(self):
        """Test the balance covers every transaction, not just the recent ones."""
        transactions = [
            Transaction(id=str(i), amount=Decimal("10"), type=TransactionType.EXPENSE)
            for i in range(8)
        ] + [Transaction(id="in", amount=Decimal("500"), type=TransactionType.INCOME)]
        context = build_context(snapshot_with(transactions), recent_limit=5)

        assert context.balance == Decimal("420")
        assert len(context.recent_transactions) == 5

    def test_only_in_progress_goals(self):
        """Test achieved goals are left out of the context."""
        goals = [
            Goal(id="g1", title="Trip", status=GoalStatus.IN_PROGRESS),
            Goal(id="g2", title="Car", status=GoalStatus.ACHIEVED),
        ]
        context = build_context(snapshot_with(goals=goals))
        assert [g.id for g in context.active_goals] == ["g1"]

    def test_instruction_mentions_state(self):
        """Test the rendered instruction carries date, balance and goals."""
        context = build_context(
            snapshot_with(goals=[Goal(id="g1", title="Trip", target_amount=Decimal("5000"))]),
            today=date(2026, 3, 1),
        )
        text = render_system_instruction(context)
        assert "2026-03-01" in text
        assert "Trip (id g1" in text
        assert "Recent Transactions: none" in text

    def test_format_amount(self):
        """Test whole amounts render without a fraction."""
        assert format_amount(Decimal("150.00")) == "150"
        assert format_amount(Decimal("12.50")) == "12.5"

    def test_running_balance_empty(self):
        """Test an empty history has a zero balance."""
        assert running_balance([]) == Decimal("0")


class TestToolArguments:
    """Tests for tool argument validation and normalization."""

    NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_transaction_defaults(self):
        """Test description defaults to the category and date to now."""
        args = validate_args(CREATE_TRANSACTION, {"amount": 150, "category": "Jantar", "type": "expense"})
        draft = normalize(CREATE_TRANSACTION, args, now=self.NOW)
        assert draft.description == "Jantar"
        assert draft.date == self.NOW.isoformat()

    def test_missing_required_rejected(self):
        """Test a missing required argument is rejected, not guessed."""
        with pytest.raises(ToolArgumentError) as exc:
            validate_args(CREATE_TRANSACTION, {"category": "Jantar", "type": "expense"})
        assert exc.value.missing == ["amount"]

    def test_explicit_null_counts_as_missing(self):
        """Test null values for required fields are treated as missing."""
        with pytest.raises(ToolArgumentError) as exc:
            validate_args(CREATE_GOAL, {"title": "Trip", "targetAmount": None})
        assert exc.value.missing == ["targetAmount"]

    def test_invalid_enum_rejected(self):
        """Test a value outside the declared enum is invalid."""
        with pytest.raises(ToolArgumentError) as exc:
            validate_args(CREATE_TRANSACTION, {"amount": 1, "category": "x", "type": "refund"})
        assert exc.value.invalid == ["type"]

    def test_goal_deadline_default(self):
        """Test the goal deadline defaults to now plus the configured days."""
        args = validate_args(CREATE_GOAL, {"title": "Trip", "targetAmount": 5000})
        draft = normalize(CREATE_GOAL, args, now=self.NOW, goal_deadline_days=30)
        assert draft.deadline.startswith("2026-03-31")

    def test_task_priority_default(self):
        """Test a task without priority is medium."""
        args = validate_args(CREATE_TASK, {"title": "Call bank", "assignee": "user1"})
        assert normalize(CREATE_TASK, args, now=self.NOW).priority == TaskPriority.MEDIUM

    def test_event_type_default(self):
        """Test an event without type is social."""
        args = validate_args(CREATE_EVENT, {"title": "Dinner", "start": "a", "end": "b"})
        assert normalize(CREATE_EVENT, args).type == EventType.SOCIAL


class TestDispatcher:
    """Tests for one assistant turn."""

    def _dispatcher(self, *results, **kwargs):
        completion = FakeCompletionClient(list(results), delay=kwargs.pop("delay", 0.0))
        return AssistantDispatcher(completion, **kwargs), completion

    def test_transaction_round_trip(self, backend):
        """Test "Gastei 150 no Jantar" lands in the synced snapshot."""
        dispatcher, completion = self._dispatcher(
            tool_calls((CREATE_TRANSACTION, {"amount": 150, "category": "Jantar", "type": "expense"}))
        )

        async def scenario():
            store = await SyncStore(backend).open(COUPLE_ID)
            mutations = MutationService(backend, COUPLE_ID, USER_ID)
            reply = await dispatcher.converse(
                "Gastei 150 no Jantar", COUPLE_ID, store.snapshot, mutations.callbacks()
            )
            return reply, store

        reply, store = asyncio.run(scenario())
        assert "150" in reply.text
        assert reply.outcomes[0].status == OutcomeStatus.DISPATCHED
        [tx] = store.snapshot.transactions
        assert tx.amount == Decimal("150")
        assert tx.category == "Jantar"
        assert tx.type == TransactionType.EXPENSE
        assert completion.calls[0]["tools"] is not None

    def test_confirmation_text(self):
        """Test the reply is the fixed confirmation sentence."""
        dispatcher, _ = self._dispatcher(
            tool_calls((CREATE_GOAL, {"title": "Japan", "targetAmount": 12000}))
        )
        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks(on_goal=Recorder())))
        assert reply.text == "New goal created: Japan with a target of $12000."

    def test_text_only_reply(self):
        """Test a reply without tool calls returns the model text."""
        dispatcher, _ = self._dispatcher(CompletionResult(text="Hello!"))
        reply = asyncio.run(dispatcher.converse("hi", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == "Hello!"
        assert reply.outcomes == []

    def test_empty_reply(self):
        """Test an empty model reply gets the generic acknowledgement."""
        dispatcher, _ = self._dispatcher(CompletionResult())
        reply = asyncio.run(dispatcher.converse("hi", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == EMPTY_REPLY

    def test_timeout_fallback(self, backend, audit):
        """Test a slow model turns into the fixed apology."""
        dispatcher, _ = self._dispatcher(
            CompletionResult(text="late"), delay=1.0, timeout_seconds=0.01, audit_logger=audit
        )
        reply = asyncio.run(dispatcher.converse("hi", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == FALLBACK_REPLY
        assert reply.error_kind == "timeout"
        assert backend.audit_events[-1].event_type.value == "assistant_fallback"

    def test_completion_error_fallback(self):
        """Test a model failure turns into the fixed apology."""
        dispatcher, _ = self._dispatcher(CompletionError("quota"))
        reply = asyncio.run(dispatcher.converse("hi", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == FALLBACK_REPLY
        assert reply.error_kind == "completion_failed"

    def test_single_flight_per_conversation(self):
        """Test a second turn in the same conversation is refused while one runs."""
        dispatcher, _ = self._dispatcher(
            CompletionResult(text="one"), CompletionResult(text="two"), CompletionResult(text="three"),
            delay=0.05,
        )

        async def scenario():
            first = asyncio.create_task(
                dispatcher.converse("a", COUPLE_ID, SyncSnapshot(), AssistantCallbacks(), conversation_id="c")
            )
            await asyncio.sleep(0.01)
            with pytest.raises(TurnInProgressError):
                await dispatcher.converse("b", COUPLE_ID, SyncSnapshot(), AssistantCallbacks(), conversation_id="c")
            other = await dispatcher.converse(
                "c", COUPLE_ID, SyncSnapshot(), AssistantCallbacks(), conversation_id="other"
            )
            return await first, other

        first, other = asyncio.run(scenario())
        assert first.text == "one"
        assert other.text == "two"

    def test_failed_callback_does_not_stop_later_ones(self):
        """Test invocations keep running after a failing callback."""
        dispatcher, _ = self._dispatcher(tool_calls(
            (CREATE_TRANSACTION, {"amount": 10, "category": "Food", "type": "expense"}),
            (CREATE_TASK, {"title": "Call bank", "assignee": "both"}),
        ))
        on_task = Recorder()
        callbacks = AssistantCallbacks(on_transaction=Recorder(fail=True), on_task=on_task)

        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), callbacks))

        assert [o.status for o in reply.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.DISPATCHED]
        assert on_task.drafts[0].title == "Call bank"
        assert reply.text == (
            "Something went wrong while trying to register the transaction. "
            "Task assigned to both: Call bank."
        )

    def test_missing_argument_never_calls_callback(self):
        """Test a rejected invocation does not reach the callback."""
        dispatcher, _ = self._dispatcher(tool_calls((CREATE_GOAL, {"title": "Trip"})))
        on_goal = Recorder()
        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks(on_goal=on_goal)))

        assert on_goal.drafts == []
        assert reply.outcomes[0].status == OutcomeStatus.REJECTED
        assert "targetAmount" in reply.text

    def test_unknown_tool_rejected(self):
        """Test a tool outside the declared set is rejected."""
        dispatcher, _ = self._dispatcher(tool_calls(("deleteEverything", {})))
        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == "I don't know how to deleteEverything."

    def test_missing_callback(self):
        """Test a tool without a callback is reported, not dropped."""
        dispatcher, _ = self._dispatcher(
            tool_calls((CREATE_EVENT, {"title": "Dinner", "start": "a", "end": "b"}))
        )
        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == "I can't add the event from here."

    def test_advice_routed_to_advisor(self):
        """Test getInvestmentAdvice is answered by the advisor, with search grounding."""
        completion = FakeCompletionClient([
            tool_calls((GET_INVESTMENT_ADVICE, {"query": "ETFs?"})),
            CompletionResult(text="Consider broad ETFs. Not financial advice."),
        ])
        dispatcher = AssistantDispatcher(completion, advisor=InvestmentAdvisor(completion))

        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))

        assert reply.outcomes[0].status == OutcomeStatus.ANSWERED
        assert reply.text.startswith("Consider broad ETFs")
        assert completion.calls[1]["search_grounding"] is True
        assert completion.calls[1]["tools"] is None

    def test_advice_without_advisor(self):
        """Test advice requests without an advisor get a fixed message."""
        dispatcher, _ = self._dispatcher(tool_calls((GET_INVESTMENT_ADVICE, {})))
        reply = asyncio.run(dispatcher.converse("x", COUPLE_ID, SyncSnapshot(), AssistantCallbacks()))
        assert reply.text == "Investment advice is not available right now."


class TestInvestmentAdvisor:
    """Tests for the advisory chat mode."""

    def test_failure_degrades_to_apology(self):
        """Test an unreachable model yields the fixed apology."""
        advisor = InvestmentAdvisor(FakeCompletionClient([CompletionError("down")]))
        reply = asyncio.run(advisor.chat("Should we buy BTC?"))
        assert reply.text == ADVISOR_FALLBACK
        assert reply.failed is True

    def test_grounding_passed_through(self):
        """Test grounding sources are returned with the answer."""
        advisor = InvestmentAdvisor(FakeCompletionClient([
            CompletionResult(text="BTC is up.", grounding=[{"uri": "https://news", "title": "News"}]),
        ]))
        reply = asyncio.run(advisor.search_market_data("BTC"))
        assert reply.grounding[0]["uri"] == "https://news"


class TestParseResponse:
    """Tests for decoding Gemini responses."""

    def test_function_calls_and_text(self):
        """Test function calls and text parts are both extracted."""
        response = SimpleNamespace(candidates=[SimpleNamespace(
            content=SimpleNamespace(parts=[
                SimpleNamespace(function_call=SimpleNamespace(name="createGoal", args={"title": "Trip"}), text=None),
                SimpleNamespace(function_call=None, text="Done."),
            ]),
            grounding_metadata=None,
        )])
        result = parse_response(response)
        assert result.invocations[0].name == "createGoal"
        assert result.invocations[0].args == {"title": "Trip"}
        assert result.text == "Done."

    def test_no_candidates(self):
        """Test an empty response parses to an empty result."""
        assert parse_response(SimpleNamespace(candidates=[])) == CompletionResult()
