"""
AI Agents Package

- AssistantDispatcher: action-taking assistant (tool calls -> mutation callbacks)
- InvestmentAdvisor: search-grounded advisory chat, no tools
"""

from gossip_couple.agents.advisor import AdvisorReply, InvestmentAdvisor
from gossip_couple.agents.completion import (
    AssistantTimeoutError,
    CompletionClient,
    CompletionError,
    CompletionResult,
    GeminiCompletionClient,
    ToolInvocation,
)
from gossip_couple.agents.dispatcher import (
    AssistantCallbacks,
    AssistantDispatcher,
    AssistantReply,
    TurnInProgressError,
    TurnState,
)
from gossip_couple.agents.tools import ToolArgumentError

__all__ = [
    "AdvisorReply",
    "InvestmentAdvisor",
    "AssistantTimeoutError",
    "CompletionClient",
    "CompletionError",
    "CompletionResult",
    "GeminiCompletionClient",
    "ToolInvocation",
    "AssistantCallbacks",
    "AssistantDispatcher",
    "AssistantReply",
    "TurnInProgressError",
    "TurnState",
    "ToolArgumentError",
]
