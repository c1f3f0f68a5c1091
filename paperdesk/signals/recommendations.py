"""Per-symbol trade recommendation built from daily bars.

This is the default idea source for trade plans. It is deliberately simple: a 20/50
SMA bias, a strategy label picked from RSI / trend / volume context, a fixed 5% stop
and 10% target, and a liquidity and volatility quality gate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from paperdesk.signals import indicators
from paperdesk.signals.strategies import get_strategy

logger = logging.getLogger(__name__)

MIN_BARS = 50
MIN_DOLLAR_VOLUME = 20_000_000.0
MAX_ATR_PCT = 0.08
MAX_RANGE_PCT = 0.05
DEFAULT_POSITION_SIZE_PCT = 5.0


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


@dataclass
class QualityGate:
    passed: bool
    blocked_reasons: list[str] = field(default_factory=list)
    liquidity_score: float = 0.0
    volatility_score: float = 0.0


@dataclass
class Recommendation:
    symbol: str
    recommendation: str
    bias: str
    strategy_id: str
    setup_type: str
    entry: float
    stop: float
    target: float
    position_size_pct: float
    score: float
    quality_gate: QualityGate
    rationale: list[str] = field(default_factory=list)


def evaluate_quality_gate(
    latest_close: float | None,
    avg_dollar_volume: float | None,
    atr_pct: float | None,
    avg_range_pct: float | None,
    bars_count: int,
) -> QualityGate:
    reasons: list[str] = []
    if not latest_close or not avg_dollar_volume or not atr_pct or not avg_range_pct or not bars_count:
        reasons.append("Insufficient data for quality checks.")
    if bars_count < MIN_BARS:
        reasons.append(f"Need at least {MIN_BARS} daily bars.")
    if (avg_dollar_volume or 0.0) < MIN_DOLLAR_VOLUME:
        reasons.append("Average dollar volume below minimum threshold.")
    if (atr_pct or 0.0) > MAX_ATR_PCT:
        reasons.append("Volatility too extreme for risk controls.")
    if (avg_range_pct or 0.0) > MAX_RANGE_PCT:
        reasons.append("Spread proxy too high for safe execution.")

    liquidity = _clamp(avg_dollar_volume / MIN_DOLLAR_VOLUME * 100, 0, 100) if avg_dollar_volume else 0.0
    volatility = _clamp((1 - atr_pct / MAX_ATR_PCT) * 100, 0, 100) if atr_pct else 0.0
    return QualityGate(
        passed=not reasons,
        blocked_reasons=reasons,
        liquidity_score=round(liquidity, 1),
        volatility_score=round(volatility, 1),
    )


def compute_signal_score(trend_score: float, gate: QualityGate, regime: Any, bias: str) -> float:
    score = 40.0 + _clamp(abs(trend_score) * 100, 0, 30)
    score += 15 if gate.passed else -20
    if regime is not None:
        if getattr(regime, "trend_chop", None) == "TREND":
            score += 5
        if getattr(regime, "vol", None) == "EXPANSION":
            score += 5
        risk = getattr(regime, "risk", None)
        if (bias == "LONG" and risk == "RISK_ON") or (bias == "SHORT" and risk == "RISK_OFF"):
            score += 5
    return float(round(_clamp(score, 0, 100)))


def resolve_strategy(recommendation: str, trend_score: float, rsi: float | None, volume_breakout: bool) -> str:
    if recommendation == "LONG" and rsi is not None and rsi < 35:
        return "MEAN_REVERSION_RSI"
    if recommendation == "LONG" and volume_breakout:
        return "BREAKOUT_VOLUME"
    if recommendation == "LONG" and trend_score > 0.01:
        return "PULLBACK_TREND"
    return "SMA_CROSS"


class SignalProvider:
    def __init__(self, quote_service: Any) -> None:
        self.quotes = quote_service

    async def get_recommendation(self, symbol: str, regime: Any = None) -> Recommendation | None:
        bars = await self.quotes.get_daily_bars(symbol)
        if not bars:
            logger.info("event=recommendation_no_bars symbol=%s", symbol)
            return None
        return build_recommendation(symbol, indicators.bars_to_frame(bars), regime)


def build_recommendation(symbol: str, df, regime: Any = None) -> Recommendation:
    closes = df["Close"]
    total = len(df)
    latest = float(closes.iloc[-1])
    sma20 = indicators.sma(closes, min(total, 20)) or latest
    sma50 = indicators.sma(closes, min(total, 50)) or latest
    atr_value = indicators.atr(df, 14)
    atr_pct = atr_value / latest if atr_value and latest else None
    rsi_value = indicators.rsi(closes, 14)

    avg_volume = float(df["Volume"].tail(20).mean()) if total else 0.0
    recent_high = float(df["High"].tail(20).max()) if total else latest
    volume_breakout = bool(avg_volume and float(df["Volume"].iloc[-1]) > 1.5 * avg_volume and latest >= recent_high)

    if sma20 > sma50:
        call = "LONG"
    elif sma20 < sma50:
        call = "SHORT"
    else:
        call = "HOLD"
    bias = "LONG" if call == "LONG" else "SHORT"

    trend_score = _clamp((sma20 - sma50) / (sma50 or 1), -1, 1)
    gate = evaluate_quality_gate(
        latest,
        indicators.average_dollar_volume(df, 20),
        atr_pct,
        indicators.average_range_pct(df, 20),
        total,
    )
    strategy_id = resolve_strategy(call, trend_score, rsi_value, volume_breakout)
    strategy = get_strategy(strategy_id)

    if bias == "LONG":
        stop, target = latest * 0.95, latest * 1.1
    else:
        stop, target = latest * 1.05, latest * 0.9

    return Recommendation(
        symbol=symbol.upper(),
        recommendation=call,
        bias=bias,
        strategy_id=strategy.strategy_id if strategy else strategy_id,
        setup_type="Pullback" if trend_score >= 0 else "MeanReversion",
        entry=round(latest, 2),
        stop=round(stop, 2),
        target=round(target, 2),
        position_size_pct=DEFAULT_POSITION_SIZE_PCT,
        score=compute_signal_score(trend_score, gate, regime, bias),
        quality_gate=gate,
        rationale=[
            f"20-day SMA ({sma20:.2f}) vs 50-day SMA ({sma50:.2f}) indicates {'uptrend' if bias == 'LONG' else 'downtrend'}.",
            "Risk plan uses a 5% stop and 10% take-profit from the entry zone.",
        ],
    )
