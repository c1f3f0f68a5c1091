from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta

from paperdesk.adapters.base import MarketDataAdapter, OHLCV, Quote
from paperdesk.adapters.finnhub import FinnhubAdapter
from paperdesk.adapters.mock import MockDataAdapter
from paperdesk.config.settings import get_settings

logger = logging.getLogger(__name__)


class QuoteService:
    """Tries each adapter in order and returns the first usable answer."""

    def __init__(self, chain: list[MarketDataAdapter]) -> None:
        if not chain:
            raise ValueError("QuoteService needs at least one adapter")
        self.chain = chain

    async def get_quote(self, symbol: str) -> Quote | None:
        for adapter in self.chain:
            quote = await adapter.get_quote(symbol)
            if quote is not None and quote.price > 0:
                return quote
            logger.debug("event=quote_miss adapter=%s symbol=%s", adapter.name, symbol)
        return None

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        results = await asyncio.gather(*(self.get_quote(s) for s in symbols))
        return [q for q in results if q is not None]

    async def get_daily_bars(self, symbol: str, days: int = 400, end: date | None = None) -> list[OHLCV]:
        end = end or date.today()
        start = end - timedelta(days=days)
        for adapter in self.chain:
            bars = await adapter.get_history(symbol, start, end)
            if bars:
                return bars
        return []

    async def close(self) -> None:
        for adapter in self.chain:
            await adapter.close()


_quote_service: QuoteService | None = None


def build_quote_service() -> QuoteService:
    settings = get_settings()
    chain: list[MarketDataAdapter] = []
    if settings.finnhub_api_key:
        chain.append(FinnhubAdapter(settings.finnhub_api_key, timeout=settings.quote_timeout_seconds))
    chain.append(MockDataAdapter())
    return QuoteService(chain)


def get_quote_service() -> QuoteService:
    global _quote_service
    if _quote_service is None:
        _quote_service = build_quote_service()
    return _quote_service
