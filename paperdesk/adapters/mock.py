"""Synthetic market data used when no provider credentials are configured."""
from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone

from paperdesk.adapters.base import MarketDataAdapter, OHLCV, Quote


class MockDataAdapter(MarketDataAdapter):
    """Seeded random walk around a fixed reference price per symbol."""

    name = "mock"

    SEED_PRICES = {
        "AAPL": 242.0,
        "MSFT": 430.0,
        "NVDA": 135.0,
        "AMZN": 225.0,
        "GOOGL": 195.0,
        "META": 610.0,
        "SPY": 590.0,
        "QQQ": 510.0,
    }

    def __init__(self, seed: int = 42, prices: dict[str, float] | None = None):
        self._rng = random.Random(seed)
        self._prices = dict(self.SEED_PRICES)
        if prices:
            self._prices.update({k.upper(): float(v) for k, v in prices.items()})

    def _price(self, symbol: str) -> float:
        return self._prices.get(symbol.strip().upper(), 100.0)

    async def get_quote(self, symbol: str) -> Quote:
        base = self._price(symbol)
        jitter = self._rng.gauss(0, base * 0.002)
        price = round(base + jitter, 2)
        change = round(jitter, 2)
        return Quote(
            symbol=symbol.strip().upper(),
            price=price,
            change=change,
            change_pct=round(change / base * 100, 2),
            source=self.name,
        )

    async def get_history(self, symbol: str, start: date, end: date) -> list[OHLCV]:
        base = self._price(symbol)
        days = max(1, (end - start).days)
        candles: list[OHLCV] = []
        price = base
        for i in range(days):
            dt = start + timedelta(days=i)
            if dt.weekday() >= 5:
                continue
            move = self._rng.gauss(0, base * 0.01)
            o = round(price, 2)
            c = round(price + move, 2)
            h = round(max(o, c) + abs(self._rng.gauss(0, base * 0.005)), 2)
            l = round(min(o, c) - abs(self._rng.gauss(0, base * 0.005)), 2)
            v = int(self._rng.uniform(1_000_000, 20_000_000))
            ts = int(datetime.combine(dt, time.min, tzinfo=timezone.utc).timestamp())
            candles.append(OHLCV(t=ts, o=o, h=h, l=l, c=c, v=v))
            price = c
        return candles
