"""
Portfolio Price Refresh

Scheduled job that refreshes current_price for every held symbol and
opens a review task for couples holding a symbol that moved sharply.

DESIGN DECISION: Prices come from the same completion endpoint as the
assistant, asked for a JSON object keyed by symbol. The reply is parsed
strictly: a symbol with a missing or non-numeric price is skipped, never
written as zero.

TRADEOFFS:
- Runs across all couples, so it needs the service-role repository
- One completion call per refresh regardless of the number of symbols
"""

import json
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from gossip_couple.agents.completion import CompletionClient
from gossip_couple.agents.context import format_amount
from gossip_couple.audit.logger import AuditLogger
from gossip_couple.models.entities import TaskPriority
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


PRICE_INSTRUCTION = "You are a market data service. Reply with JSON only."

_FENCE = re.compile(r"```(?:json)?")


class PriceQuote(BaseModel):
    price: Decimal
    change_percent: Decimal = Decimal("0")


class RefreshResult(BaseModel):
    symbols_updated: int = 0
    alerts_created: int = 0
    quotes: dict[str, PriceQuote] = Field(default_factory=dict)


def build_price_prompt(symbols: list[str]) -> str:
    return (
        "For the following financial assets, return a JSON object where keys are "
        "the symbols and values are objects containing 'price' (number) and "
        "'change_percent' (number, e.g. -2.5 for a 2.5% drop).\n\n"
        f"Assets: {', '.join(symbols)}\n\n"
        "Return ONLY valid JSON. Use the most recent market close or current price; "
        "for crypto, use real-time.\n\n"
        'Example: {"AAPL": {"price": 150.20, "change_percent": 1.5}}'
    )


def parse_quotes(text: str, symbols: Optional[list[str]] = None) -> dict[str, PriceQuote]:
    """
    Parse the model's JSON reply, tolerating markdown fences.

    Quotes for symbols outside `symbols` (when given) are dropped, as are
    prices that are not finite and positive.

    Raises:
        ValueError: when the reply is not a JSON object
    """
    cleaned = _FENCE.sub("", text or "").strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("Price reply is not a JSON object")

    wanted = set(symbols) if symbols is not None else None
    quotes = {}
    for symbol, raw in data.items():
        if wanted is not None and symbol not in wanted:
            logger.warning("price_quote_unrequested", symbol=symbol)
            continue
        if not isinstance(raw, dict):
            continue
        try:
            price = Decimal(str(raw["price"]))
            change = Decimal(str(raw.get("change_percent") or 0))
        except (KeyError, InvalidOperation, ValueError):
            logger.warning("price_quote_skipped", symbol=symbol)
            continue
        if not (price.is_finite() and change.is_finite()) or price <= 0:
            logger.warning("price_quote_skipped", symbol=symbol, price=str(price))
            continue
        quotes[symbol] = PriceQuote(price=price, change_percent=change)
    return quotes


def alert_title(symbol: str, change_percent: Decimal) -> str:
    direction = "surged" if change_percent > 0 else "dropped"
    return f"Review {symbol}: {direction} {format_amount(change_percent)}%"


class PortfolioPriceUpdater:
    """
    Args:
        repository: service-role repository
        completion: completion client used as the price source
        alert_threshold_percent: absolute daily move that triggers a task
    """

    def __init__(
        self,
        repository: CoupleRepository,
        completion: CompletionClient,
        alert_threshold_percent: float = 5.0,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._completion = completion
        self._threshold = Decimal(str(alert_threshold_percent))
        self._audit = audit_logger or AuditLogger()

    async def refresh(self) -> RefreshResult:
        holdings = await self._repository.select(Table.INVESTMENTS)
        symbols = list(dict.fromkeys(h["symbol"] for h in holdings if h.get("symbol")))
        if not symbols:
            logger.info("price_refresh_skipped", reason="no investments")
            return RefreshResult()

        try:
            result = await self._completion.complete(
                build_price_prompt(symbols),
                PRICE_INSTRUCTION,
            )
            quotes = parse_quotes(result.text or "", symbols)
        except Exception as e:
            await self._audit.log_external_service_error("gemini", str(e))
            raise

        updated = 0
        alerts = 0
        for symbol, quote in quotes.items():
            try:
                await self._repository.update(
                    Table.INVESTMENTS,
                    {"symbol": symbol},
                    {"current_price": float(quote.price)},
                )
                updated += 1
            except Exception as e:
                logger.error("price_update_failed", symbol=symbol, error=str(e))

            if abs(quote.change_percent) >= self._threshold:
                alerts += await self._open_review_tasks(symbol, quote, holdings)

        logger.info("price_refresh_completed", symbols_updated=updated, alerts_created=alerts)
        return RefreshResult(symbols_updated=updated, alerts_created=alerts, quotes=quotes)

    async def _open_review_tasks(
        self,
        symbol: str,
        quote: PriceQuote,
        holdings: list[dict],
    ) -> int:
        couple_ids = list(dict.fromkeys(
            h["couple_id"] for h in holdings
            if h.get("symbol") == symbol and h.get("couple_id")
        ))
        now = datetime.now(timezone.utc).isoformat()
        for couple_id in couple_ids:
            await self._repository.insert(Table.TASKS, {
                "couple_id": couple_id,
                "title": alert_title(symbol, quote.change_percent),
                "priority": TaskPriority.HIGH.value,
                "deadline": now,
                "completed": False,
                "financial_impact": 0,
            })
        return len(couple_ids)
