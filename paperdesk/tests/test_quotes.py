from __future__ import annotations

import asyncio
from datetime import date

import httpx

from paperdesk.adapters.finnhub import FinnhubAdapter
from paperdesk.adapters.mock import MockDataAdapter
from paperdesk.adapters.quotes import QuoteService


def _finnhub(handler) -> FinnhubAdapter:
    return FinnhubAdapter("test-key", transport=httpx.MockTransport(handler))


def test_finnhub_quote_and_candles() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["token"] == "test-key"
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json={"c": 101.5, "d": 1.5, "dp": 1.5})
        return httpx.Response(
            200,
            json={"s": "ok", "t": [1771372800], "o": [100.0], "h": [102.0], "l": [99.0], "c": [101.5], "v": [1000]},
        )

    adapter = _finnhub(handler)

    async def scenario():
        quote = await adapter.get_quote("aapl")
        bars = await adapter.get_history("AAPL", date(2026, 2, 1), date(2026, 2, 18))
        await adapter.close()
        return quote, bars

    quote, bars = asyncio.run(scenario())
    assert (quote.symbol, quote.price, quote.source) == ("AAPL", 101.5, "finnhub")
    assert [(b.t, b.c) for b in bars] == [(1771372800, 101.5)]


def test_finnhub_forbidden_disables_adapter() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(403, json={"error": "forbidden"})

    adapter = _finnhub(handler)

    async def scenario():
        first = await adapter.get_quote("AAPL")
        second = await adapter.get_quote("AAPL")
        await adapter.close()
        return first, second

    assert asyncio.run(scenario()) == (None, None)
    assert len(calls) == 1
    assert adapter.disabled is True


def test_quote_service_falls_back_to_synthetic_data() -> None:
    service = QuoteService([_finnhub(lambda request: httpx.Response(200, json={"c": 0})), MockDataAdapter(prices={"AAPL": 200.0})])

    async def scenario():
        quotes = await service.get_quotes(["AAPL", "MSFT"])
        bars = await service.get_daily_bars("AAPL", days=30, end=date(2026, 2, 18))
        await service.close()
        return quotes, bars

    quotes, bars = asyncio.run(scenario())
    assert [q.source for q in quotes] == ["mock", "mock"]
    assert abs(quotes[0].price - 200.0) < 200.0 * 0.02
    assert bars and all(b.h >= max(b.o, b.c) for b in bars)


def test_mock_adapter_is_deterministic_for_a_seed() -> None:
    async def history(seed: int):
        return await MockDataAdapter(seed=seed).get_history("SPY", date(2026, 1, 1), date(2026, 2, 1))

    assert asyncio.run(history(7)) == asyncio.run(history(7))
