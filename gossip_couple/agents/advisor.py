"""
Investment Advisor

The advisory chat mode.

BOUNDARIES:
- Declares no tools, so it can never mutate anything
- Uses search grounding for current prices and news
- Answers from the couple's risk profile and goals, read-only
- Degrades to a fixed apology when the model is unreachable
"""

import asyncio
from typing import Any, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from gossip_couple.agents.completion import CompletionClient
from gossip_couple.models.entities import CoupleProfile, Goal

logger = structlog.get_logger(__name__)


ADVISOR_FALLBACK = "Desculpe, não consegui acessar os dados de mercado no momento."
MARKET_DATA_FALLBACK = "Sorry, I couldn't fetch market data right now."


class AdvisorReply(BaseModel):
    text: str
    grounding: list[dict[str, Any]] = Field(default_factory=list)
    failed: bool = False


def _advisor_instruction(profile: Optional[CoupleProfile], goals: Sequence[Goal]) -> str:
    user1 = profile.user1.name if profile and profile.user1.name else "Partner 1"
    user2 = profile.user2.name if profile and profile.user2.name else "Partner 2"
    risk = profile.risk_tolerance.value if profile else "medium"
    goal_lines = "; ".join(
        f"{g.title} (Target: {g.target_amount}, Current: {g.current_amount})" for g in goals
    ) or "none"

    return f"""You are "Consultora IA", an expert Investment Consultant for a couple ({user1} & {user2}).
User Risk Tolerance: {risk}.
Active Goals: {goal_lines}.

Your capabilities:
- Analyze assets (stocks, crypto, ETFs, funds).
- Suggest investments that align with the couple's risk profile and goals.
- Provide market commentary.

CRITICAL COMPLIANCE:
- Always include a brief, subtle reminder that this is not professional financial advice.
- Be data-driven but accessible.
- Use search to find the latest real-time prices and news when specific assets or market trends are mentioned."""


class InvestmentAdvisor:
    """Search-grounded investment chat. Never calls tools."""

    def __init__(
        self,
        completion: CompletionClient,
        temperature: float = 0.5,
        timeout_seconds: float = 30.0,
    ):
        self._completion = completion
        self._temperature = temperature
        self._timeout = timeout_seconds

    async def _ask(self, message: str, instruction: str) -> AdvisorReply:
        result = await asyncio.wait_for(
            self._completion.complete(
                message,
                instruction,
                tools=None,
                search_grounding=True,
                temperature=self._temperature,
            ),
            timeout=self._timeout,
        )
        return AdvisorReply(text=result.text or "", grounding=result.grounding)

    async def chat(
        self,
        message: str,
        profile: Optional[CoupleProfile] = None,
        goals: Sequence[Goal] = (),
    ) -> AdvisorReply:
        """Answer an investment question for the couple."""
        try:
            reply = await self._ask(message, _advisor_instruction(profile, goals))
        except Exception as e:
            logger.warning("advisor_chat_failed", error=str(e))
            return AdvisorReply(text=ADVISOR_FALLBACK, failed=True)
        if not reply.text:
            return AdvisorReply(text=ADVISOR_FALLBACK, failed=True)
        return reply

    async def search_market_data(self, query: str) -> AdvisorReply:
        """Current price, change percentage and sentiment for a query."""
        prompt = (
            f"Provide real-time market data and analysis for: {query}. "
            "Distinctly list current price, change percentage, and a brief sentiment analysis."
        )
        try:
            reply = await self._ask(prompt, "You are a concise market data assistant.")
        except Exception as e:
            logger.warning("market_search_failed", error=str(e), query=query)
            return AdvisorReply(text=MARKET_DATA_FALLBACK, failed=True)
        if not reply.text:
            return AdvisorReply(text=MARKET_DATA_FALLBACK, failed=True)
        return reply
