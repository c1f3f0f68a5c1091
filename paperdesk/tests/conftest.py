from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from paperdesk.adapters.base import OHLCV, Quote
from paperdesk.models import PaperTradeORM, core, user  # noqa: F401
from paperdesk.shared.db import Base, enable_sqlite_savepoints
from paperdesk.signals.recommendations import QualityGate, Recommendation
from paperdesk.signals.regime import RegimeReading

# Wednesday 2026-02-18 16:00 UTC is 11:00 in New York, inside the regular session.
MARKET_OPEN_UTC = datetime(2026, 2, 18, 16, 0)
# Same day 23:30 UTC is after the close.
AFTER_CLOSE_UTC = datetime(2026, 2, 18, 23, 30)
# Saturday.
WEEKEND_UTC = datetime(2026, 2, 21, 16, 0)


class FakeQuoteService:
    def __init__(self, prices: dict[str, float] | None = None, bars: dict[str, list[OHLCV]] | None = None) -> None:
        self.prices = dict(prices or {})
        self.bars = dict(bars or {})
        self.quote_calls: list[str] = []

    async def get_quote(self, symbol: str) -> Quote | None:
        self.quote_calls.append(symbol)
        price = self.prices.get(symbol.upper())
        if price is None:
            return None
        return Quote(symbol=symbol.upper(), price=price, source="fake")

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        out = []
        for symbol in symbols:
            quote = await self.get_quote(symbol)
            if quote is not None:
                out.append(quote)
        return out

    async def get_daily_bars(self, symbol: str, days: int = 400, end: date | None = None) -> list[OHLCV]:
        return list(self.bars.get(symbol.upper(), []))

    async def close(self) -> None:
        return None


class FakeRegimeDetector:
    def __init__(self, reading: RegimeReading | None = None) -> None:
        self.reading = reading or RegimeReading(trend_chop="TREND", vol="CONTRACTION", risk="RISK_ON")
        self.calls = 0

    async def detect(self) -> RegimeReading:
        self.calls += 1
        return self.reading


class FakeSignalProvider:
    def __init__(self, recommendations: dict[str, Recommendation] | None = None) -> None:
        self.recommendations = dict(recommendations or {})

    async def get_recommendation(self, symbol: str, regime: Any = None) -> Recommendation | None:
        return self.recommendations.get(symbol.upper())


def make_recommendation(symbol: str, strategy_id: str, size_pct: float = 5.0, score: float = 80.0, entry: float = 100.0) -> Recommendation:
    return Recommendation(
        symbol=symbol,
        recommendation="BUY",
        bias="LONG",
        strategy_id=strategy_id,
        setup_type="TEST",
        entry=entry,
        stop=round(entry * 0.95, 2),
        target=round(entry * 1.1, 2),
        position_size_pct=size_pct,
        score=score,
        quality_gate=QualityGate(passed=True),
        rationale=[f"{symbol} test setup"],
    )


@pytest.fixture
def session_factory():
    engine = enable_sqlite_savepoints(
        create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def quotes() -> FakeQuoteService:
    return FakeQuoteService({"AAPL": 100.0, "MSFT": 50.0, "PENNY": 0.5})


@pytest.fixture
def regime_detector() -> FakeRegimeDetector:
    return FakeRegimeDetector()


def add_history_trade(
    db,
    strategy_id: str,
    r_multiple: float,
    filled_at: datetime,
    regime: dict | None = None,
    symbol: str = "HIST",
    account_id: str = "default",
) -> PaperTradeORM:
    """Closed trade with a known R, used to give strategies a track record."""
    row = PaperTradeORM(
        account_id=account_id,
        order_id=str(uuid4()),
        symbol=symbol,
        side="buy",
        qty=0.0,
        price=100.0,
        strategy_id=strategy_id,
        strategy_tags=[],
        r_multiple=r_multiple,
        regime_at_trade=regime,
        commission=0.0,
        notional=0.0,
        realized_pnl=r_multiple * 100,
        filled_at=filled_at,
    )
    db.add(row)
    return row
