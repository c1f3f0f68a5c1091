"""Daily market regime classification from SPY and QQQ daily bars."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError

from paperdesk.models import RegimeSnapshotORM
from paperdesk.signals import indicators

logger = logging.getLogger(__name__)


class TrendChop(str, enum.Enum):
    TREND = "TREND"
    CHOP = "CHOP"


class Volatility(str, enum.Enum):
    EXPANSION = "EXPANSION"
    CONTRACTION = "CONTRACTION"


class RiskMode(str, enum.Enum):
    RISK_ON = "RISK_ON"
    RISK_OFF = "RISK_OFF"


@dataclass
class RegimeReading:
    trend_chop: str = TrendChop.CHOP.value
    vol: str = Volatility.CONTRACTION.value
    risk: str = RiskMode.RISK_OFF.value
    notes: list[str] = field(default_factory=list)


def classify_trend(sma20: float | None, sma50: float | None, slope20: float | None) -> str:
    if not sma20 or not sma50:
        return TrendChop.CHOP.value
    spread = abs(sma20 - sma50) / sma50
    if spread > 0.01 and abs(slope20 or 0.0) > 0.01:
        return TrendChop.TREND.value
    return TrendChop.CHOP.value


def classify_volatility(atr_pct: float | None, rolling_vol: float | None) -> str:
    if not atr_pct or not rolling_vol:
        return Volatility.CONTRACTION.value
    return Volatility.EXPANSION.value if atr_pct > rolling_vol else Volatility.CONTRACTION.value


class RegimeDetector:
    def __init__(self, quote_service: Any) -> None:
        self.quotes = quote_service

    async def _bars(self, symbol: str, notes: list[str]):
        try:
            return await self.quotes.get_daily_bars(symbol)
        except Exception:
            logger.exception("event=regime_bars_failed symbol=%s", symbol)
            notes.append(f"{symbol} data unavailable, using defaults.")
            return []

    async def detect(self) -> RegimeReading:
        notes: list[str] = []
        spy_bars = await self._bars("SPY", notes)
        qqq_bars = await self._bars("QQQ", notes)

        if not spy_bars:
            notes.append("Insufficient market data for regime detection.")
            return RegimeReading(notes=notes)

        spy = indicators.bars_to_frame(spy_bars)
        closes = spy["Close"]
        last_close = float(closes.iloc[-1])
        sma200 = indicators.sma(closes, 200)
        spy_atr = indicators.atr(spy, 14)
        atr_pct = spy_atr / last_close if spy_atr and last_close else None

        trend_chop = classify_trend(
            indicators.sma(closes, 20),
            indicators.sma(closes, 50),
            indicators.slope(closes.tail(20), 10),
        )
        vol = classify_volatility(atr_pct, indicators.rolling_volatility(closes, 20))

        risk = RiskMode.RISK_ON.value if sma200 and last_close > sma200 else RiskMode.RISK_OFF.value
        if qqq_bars:
            qqq_closes = indicators.bars_to_frame(qqq_bars)["Close"]
            qqq_sma200 = indicators.sma(qqq_closes, 200)
            if not qqq_sma200 or float(qqq_closes.iloc[-1]) <= qqq_sma200:
                risk = RiskMode.RISK_OFF.value
        else:
            notes.append("QQQ unavailable; risk-on uses SPY only.")

        return RegimeReading(trend_chop=trend_chop, vol=vol, risk=risk, notes=notes)


async def ensure_regime_snapshot(db, detector: RegimeDetector, day: str, allow_prior: bool = False) -> RegimeSnapshotORM:
    """Return the cached snapshot for ``day`` (or the latest earlier one), detecting once if missing."""
    query = db.query(RegimeSnapshotORM)
    if allow_prior:
        snapshot = query.filter(RegimeSnapshotORM.date <= day).order_by(RegimeSnapshotORM.date.desc()).first()
    else:
        snapshot = query.filter(RegimeSnapshotORM.date == day).first()
    if snapshot is not None:
        return snapshot

    reading = await detector.detect()
    snapshot = RegimeSnapshotORM(
        date=day,
        trend_chop=reading.trend_chop,
        vol=reading.vol,
        risk=reading.risk,
        notes=list(reading.notes),
    )
    try:
        with db.begin_nested():
            db.add(snapshot)
    except IntegrityError:
        snapshot = db.query(RegimeSnapshotORM).filter(RegimeSnapshotORM.date == day).one()
    logger.info("event=regime_snapshot_created date=%s trend=%s vol=%s risk=%s", day, reading.trend_chop, reading.vol, reading.risk)
    return snapshot
