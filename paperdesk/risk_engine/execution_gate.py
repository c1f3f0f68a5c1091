"""Statistical and account-level eligibility check run before a plan idea is executed.

Unlike the guardrails, the gate never short-circuits: every failing condition is listed
in ``reasons_blocked`` so the caller can show the full picture.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

from paperdesk.risk_engine import compute

MIN_TRADES = 30
MIN_SHARPE = 0.3
MAX_DAILY_DRAWDOWN_PCT = 1.5
MAX_CONSECUTIVE_LOSSES = 3
MAX_EXPOSURE_PCT = 20.0
MIN_CONFIDENCE = 70
MIN_ALIGNMENT = 55


@dataclass(frozen=True)
class StrategyStats:
    trade_count: int
    expectancy: float | None
    std_dev_r: float
    sharpe_like: float
    recent_avg_r: float | None


@dataclass(frozen=True)
class AccountStats:
    daily_drawdown: float
    exposure_pct: float
    consecutive_losses: int


@dataclass(frozen=True)
class ProjectedStats:
    post_trade_exposure_pct: float
    projected_risk_pct: float | None
    recommended_qty: int


@dataclass
class GateResult:
    eligible: bool
    reasons_blocked: list[str] = field(default_factory=list)
    strategy_stats: StrategyStats | None = None
    account_stats: AccountStats | None = None
    projected_stats: ProjectedStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _round(value: float | None) -> float | None:
    return None if value is None else round(float(value), 2)


def _equity_base(account: Any, settings: Any) -> float:
    return float(_get(account, "equity") or _get(settings, "starting_cash") or 0.0)


def calculate_strategy_stats(trades: Sequence[Any]) -> StrategyStats:
    values = compute.r_values(trades)
    exp = compute.expectancy(values)
    std = compute.std_dev(values)
    return StrategyStats(
        trade_count=len(trades),
        expectancy=_round(exp),
        std_dev_r=round(std, 2),
        sharpe_like=round(compute.sharpe_like(exp, std), 2),
        recent_avg_r=_round(compute.recent_avg_r(values)),
    )


def calculate_account_stats(account: Any, settings: Any) -> AccountStats:
    equity = _equity_base(account, settings)
    daily_pnl = float(_get(account, "daily_pnl") or 0.0)
    daily_drawdown = abs(daily_pnl) / equity * 100 if equity and daily_pnl < 0 else 0.0
    exposure_pct = float(_get(account, "positions_value") or 0.0) / equity * 100 if equity else 0.0
    return AccountStats(
        daily_drawdown=round(daily_drawdown, 2),
        exposure_pct=round(exposure_pct, 2),
        consecutive_losses=int(_get(settings, "consecutive_losses") or 0),
    )


def calculate_projected_stats(idea: Any, account: Any, settings: Any) -> ProjectedStats:
    equity = _equity_base(account, settings)
    size_pct = float(_get(idea, "position_size_pct") or 0.0)
    entry = float(_get(idea, "entry") or 0.0)
    stop = float(_get(idea, "stop") or 0.0)
    planned_notional = equity * size_pct / 100 if equity else 0.0
    recommended_qty = math.floor(planned_notional / entry) if entry > 0 else 0
    positions_value = float(_get(account, "positions_value") or 0.0)
    post_trade = (positions_value + planned_notional) / equity * 100 if equity else 0.0
    projected_risk = abs(entry - stop) / entry * size_pct if entry and stop else None
    return ProjectedStats(
        post_trade_exposure_pct=round(post_trade, 2),
        projected_risk_pct=_round(projected_risk),
        recommended_qty=int(recommended_qty),
    )


def evaluate_execution_gate(idea: Any, trades: Sequence[Any], account: Any, settings: Any) -> GateResult:
    strategy = calculate_strategy_stats(trades)
    acct = calculate_account_stats(account, settings)
    projected = calculate_projected_stats(idea, account, settings)
    reasons: list[str] = []

    if strategy.trade_count < MIN_TRADES:
        reasons.append(f"Strategy trade count below {MIN_TRADES}.")
    if strategy.expectancy is None or strategy.expectancy <= 0:
        reasons.append("Strategy expectancy must be > 0.")
    if strategy.sharpe_like < MIN_SHARPE:
        reasons.append(f"Strategy Sharpe-like ratio below {MIN_SHARPE}.")
    if strategy.recent_avg_r is None:
        reasons.append("Insufficient recent R data.")
    elif strategy.recent_avg_r < 0:
        reasons.append("Last 5 trades avg R below 0.")

    if float(_get(idea, "confidence_score") or 0) < MIN_CONFIDENCE:
        reasons.append(f"Plan confidence score below {MIN_CONFIDENCE}.")
    if float(_get(idea, "alignment_score") or 0) < MIN_ALIGNMENT:
        reasons.append(f"Plan alignment score below {MIN_ALIGNMENT}.")

    drawdown_breached = acct.daily_drawdown > MAX_DAILY_DRAWDOWN_PCT
    losses_breached = acct.consecutive_losses >= MAX_CONSECUTIVE_LOSSES
    if drawdown_breached:
        reasons.append(f"Daily drawdown exceeds {MAX_DAILY_DRAWDOWN_PCT}%.")
    if losses_breached:
        reasons.append("Consecutive losses threshold reached.")
    if projected.post_trade_exposure_pct > MAX_EXPOSURE_PCT:
        reasons.append(f"Post-trade exposure exceeds {MAX_EXPOSURE_PCT:g}%.")
    if projected.recommended_qty < 1:
        reasons.append("Position size too small to execute.")
    if drawdown_breached or losses_breached:
        reasons.append("Circuit breaker active for the day.")

    return GateResult(
        eligible=not reasons,
        reasons_blocked=reasons,
        strategy_stats=strategy,
        account_stats=acct,
        projected_stats=projected,
    )
