"""Strategy ranking and daily trade plan generation.

Ranking looks at closed trades over a trailing window and keeps only strategies with a
stable positive edge. The top three feed idea generation, and ideas are then capped
greedily against the total exposure budget.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paperdesk.audit.service import log_audit
from paperdesk.config.settings import get_settings
from paperdesk.errors import DuplicatePlanError, NotFoundError, PlanBlockedError
from paperdesk.models import PaperTradeORM, PlanLogStatus, TradeIdeaORM, TradePlanLogORM, TradePlanORM
from paperdesk.paper_trading.accounts import get_or_create_settings, list_trades
from paperdesk.paper_trading.ledger import compute_r_multiple
from paperdesk.risk_engine import compute
from paperdesk.shared.market_calendar import get_market_status
from paperdesk.signals.regime import RegimeDetector, ensure_regime_snapshot
from paperdesk.signals.strategies import STRATEGIES, StrategyDefinition
from paperdesk.trade_plan.state import IdeaStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_IDEAS = 5
DEFAULT_MAX_EXPOSURE_PCT = 20.0
MIN_STRATEGY_TRADES = 15
MIN_ALIGN_NEUTRAL_TRADES = 3
ALIGNMENT_PENALTY_TRADES = 5
MIN_SHARPE = 0.2
TOP_STRATEGIES = 3
NEUTRAL_ALIGNMENT = 50.0
# a past trade counts as regime-aligned when at least this many of
# (trend/chop, volatility, risk) match the current regime
ALIGNMENT_MATCH_THRESHOLD = 2

NO_STABLE_STRATEGIES = "No statistically stable strategies today."
NO_ELIGIBLE_IDEAS = "No eligible ideas passed the quality gate."


@dataclass(frozen=True)
class StrategyRank:
    strategy_id: str
    score: float
    expectancy: float
    std_dev_r: float
    sharpe_like: float
    sharpe_normalized: float
    max_drawdown_pct: float
    recent_avg_r: float | None
    win_rate: float
    alignment_score: float
    trade_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradeIdea:
    symbol: str
    strategy_id: str
    bias: str
    entry: float
    stop: float
    target: float
    position_size_pct: float
    signal_score: float
    confidence_score: float
    alignment_score: float
    reason: str


@dataclass(frozen=True)
class CappedIdeas:
    trade_ideas: list[TradeIdea]
    total_suggested_exposure_pct: float


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def can_generate_plan(market_status: str) -> bool:
    return market_status == "OPEN"


def get_plan_date(now: datetime | None = None) -> str:
    return (now or datetime.utcnow()).date().isoformat()


def normalize_expectancy(expectancy: float) -> float:
    return _clamp((expectancy + 1) / 3, 0, 1) * 100


def normalize_sharpe(sharpe_like: float) -> float:
    return _clamp(min(sharpe_like, compute.SHARPE_CAP) / 2, 0, 1) * 100


def _regime_value(regime: Any, key: str) -> Any:
    if regime is None:
        return None
    if isinstance(regime, dict):
        return regime.get(key)
    return getattr(regime, key, None)


def match_score(trade_regime: Any, current_regime: Any) -> int:
    if not trade_regime or current_regime is None:
        return 0
    score = 0
    for key in ("trend_chop", "vol", "risk"):
        value = _regime_value(trade_regime, key)
        if value and value == _regime_value(current_regime, key):
            score += 1
    return score


def compute_confidence(signal_score: float, alignment_score: float, strategy_score: float | None) -> float:
    weight = strategy_score / 100 if strategy_score else 0.5
    return _clamp(((signal_score + alignment_score) / 2) * weight, 0, 100)


def rank_strategies(
    trades: Iterable[Any],
    regime: Any,
    strategies: Sequence[StrategyDefinition] = STRATEGIES,
) -> list[StrategyRank]:
    """Rank catalog strategies by composite edge score, best first.

    Strategies without a statistically stable positive edge are dropped.
    """
    grouped: dict[str, list[Any]] = {s.strategy_id: [] for s in strategies}
    ordered = sorted(trades, key=lambda t: getattr(t, "filled_at", None) or datetime.min)
    for trade in ordered:
        bucket = grouped.get(getattr(trade, "strategy_id", None) or "")
        if bucket is not None:
            bucket.append(trade)

    ranked: list[StrategyRank] = []
    for strategy_id, sample in grouped.items():
        trade_count = len(sample)
        if trade_count < MIN_STRATEGY_TRADES:
            continue
        values = compute.r_values(sample)
        exp = compute.expectancy(values)
        if exp is None or exp <= 0:
            continue
        std = compute.std_dev(values)
        if std >= 2 * abs(exp):
            continue
        sharpe = compute.sharpe_like(exp, std)
        if sharpe <= MIN_SHARPE:
            continue

        aligned = [t for t in sample if match_score(getattr(t, "regime_at_trade", None), regime) >= ALIGNMENT_MATCH_THRESHOLD]
        aligned_wins = sum(1 for t in aligned if float(t.realized_pnl or 0) > 0)
        if len(aligned) < MIN_ALIGN_NEUTRAL_TRADES:
            alignment = NEUTRAL_ALIGNMENT
        else:
            alignment = aligned_wins / len(aligned) * 100

        win_rate = compute.win_rate(sample)
        sharpe_norm = normalize_sharpe(sharpe)
        score = normalize_expectancy(exp) * 0.5 + alignment * 0.2 + win_rate * 0.1 + sharpe_norm * 0.2

        if len(aligned) >= ALIGNMENT_PENALTY_TRADES and alignment < 50:
            score *= 0.7

        recent = compute.recent_avg_r(values)
        if recent is not None:
            if recent < 0:
                score *= 0.6
            elif recent > exp:
                score *= 1.1

        ranked.append(
            StrategyRank(
                strategy_id=strategy_id,
                score=round(score, 2),
                expectancy=round(exp, 2),
                std_dev_r=round(std, 2),
                sharpe_like=round(sharpe, 2),
                sharpe_normalized=round(sharpe_norm, 2),
                max_drawdown_pct=round(compute.max_drawdown_pct(sample), 2),
                recent_avg_r=None if recent is None else round(recent, 2),
                win_rate=round(win_rate, 2),
                alignment_score=round(alignment, 2),
                trade_count=trade_count,
            )
        )

    ranked.sort(key=lambda r: r.score, reverse=True)
    return ranked


def build_trade_idea(rec: Any, rank: StrategyRank | None, max_position_pct: float, regime: Any) -> TradeIdea:
    base_size = min(rec.position_size_pct or 5.0, max_position_pct or 5.0)
    penalty = 0.75 if _regime_value(regime, "trend_chop") == "CHOP" and _regime_value(regime, "vol") == "EXPANSION" else 1.0
    alignment = rank.alignment_score if rank is not None else NEUTRAL_ALIGNMENT
    signal_score = float(rec.score or 0)
    confidence = compute_confidence(signal_score, alignment, rank.score if rank is not None else None)
    return TradeIdea(
        symbol=rec.symbol.upper(),
        strategy_id=rec.strategy_id,
        bias=rec.bias,
        entry=rec.entry,
        stop=rec.stop,
        target=rec.target,
        position_size_pct=round(base_size * penalty, 2),
        signal_score=signal_score,
        confidence_score=float(round(confidence)),
        alignment_score=float(round(alignment)),
        reason=(rec.rationale[0] if rec.rationale else "Signal aligns with top-ranked strategy."),
    )


def apply_exposure_cap(ideas: Sequence[TradeIdea], max_exposure_pct: float) -> CappedIdeas:
    """Greedy allocation in ranking order; ideas after the budget runs out are dropped."""
    capped: list[TradeIdea] = []
    total = 0.0
    for idea in ideas:
        remaining = max_exposure_pct - total
        if remaining <= 0:
            break
        size = min(idea.position_size_pct, remaining)
        if size <= 0:
            break
        capped.append(replace(idea, position_size_pct=round(size, 2)))
        total += size
    return CappedIdeas(trade_ideas=capped, total_suggested_exposure_pct=round(total, 2))


def build_plan_outcome(ranked: Sequence[StrategyRank], capped: CappedIdeas) -> tuple[list[TradeIdea], float, str]:
    if not ranked:
        return [], 0.0, NO_STABLE_STRATEGIES
    notes = "" if capped.trade_ideas else NO_ELIGIBLE_IDEAS
    return list(capped.trade_ideas), capped.total_suggested_exposure_pct, notes


async def build_trade_ideas(
    signal_provider: Any,
    watchlist: Sequence[str],
    regime: Any,
    ranked: Sequence[StrategyRank],
    max_position_pct: float,
    max_ideas: int = DEFAULT_MAX_IDEAS,
    max_exposure_pct: float = DEFAULT_MAX_EXPOSURE_PCT,
) -> CappedIdeas:
    top = {r.strategy_id: r for r in ranked[:TOP_STRATEGIES]}
    symbols = [s.strip().upper() for s in watchlist if s and s.strip()]
    results = await asyncio.gather(
        *(signal_provider.get_recommendation(symbol, regime) for symbol in symbols),
        return_exceptions=True,
    )

    candidates: list[TradeIdea] = []
    for symbol, rec in zip(symbols, results):
        if len(candidates) >= max_ideas:
            break
        if isinstance(rec, BaseException):
            logger.warning("event=recommendation_failed symbol=%s error=%s", symbol, rec)
            continue
        if rec is None or rec.recommendation == "HOLD":
            continue
        if not rec.quality_gate.passed:
            continue
        rank = top.get(rec.strategy_id)
        if rank is None:
            continue
        idea = build_trade_idea(rec, rank, max_position_pct, regime)
        if idea.position_size_pct <= 0:
            continue
        candidates.append(idea)

    return apply_exposure_cap(candidates, max_exposure_pct)


def _regime_payload(snapshot: Any) -> dict[str, Any]:
    if snapshot is None:
        return {"date": None, "trend_chop": None, "vol": None, "risk": None, "notes": []}
    return snapshot.as_dict()


def _log_attempt(
    db: Session,
    account_id: str,
    date: str,
    market_status: str | None,
    status: PlanLogStatus,
    reason: str = "",
    plan_id: str | None = None,
) -> None:
    db.add(
        TradePlanLogORM(
            account_id=account_id,
            date=date,
            market_status=market_status,
            status=status.value,
            reason=reason,
            plan_id=plan_id,
        )
    )
    db.commit()


def get_plan(db: Session, account_id: str, date: str) -> TradePlanORM | None:
    return (
        db.query(TradePlanORM)
        .filter(TradePlanORM.account_id == account_id, TradePlanORM.date == date)
        .first()
    )


def get_plan_by_id(db: Session, account_id: str, plan_id: str) -> TradePlanORM:
    plan = (
        db.query(TradePlanORM)
        .filter(TradePlanORM.id == plan_id, TradePlanORM.account_id == account_id)
        .first()
    )
    if plan is None:
        raise NotFoundError("Trade plan not found.")
    return plan


def find_idea(plan: TradePlanORM, idea_id: str) -> TradeIdeaORM:
    for idea in plan.ideas:
        if idea.id == idea_id:
            return idea
    raise NotFoundError("Trade idea not found.")


class TradePlanService:
    def __init__(self, signal_provider: Any, regime_detector: RegimeDetector) -> None:
        self.signals = signal_provider
        self.regimes = regime_detector

    async def _rank(self, db: Session, account_id: str, now: datetime, regime: Any) -> list[StrategyRank]:
        window = get_settings().plan_window_days
        trades = list_trades(db, account_id, since=now - timedelta(days=window))
        return rank_strategies(trades, regime)

    async def generate_trade_plan(
        self,
        db: Session,
        account_id: str,
        now: datetime | None = None,
        watchlist: Sequence[str] | None = None,
        max_ideas: int | None = None,
        max_exposure_pct: float | None = None,
    ) -> TradePlanORM:
        """Create today's plan. Raises DuplicatePlanError if one already exists."""
        now = now or datetime.utcnow()
        app_settings = get_settings()
        date = get_plan_date(now)
        market = get_market_status(now)

        existing = get_plan(db, account_id, date)
        if existing is not None:
            _log_attempt(db, account_id, date, market.status, PlanLogStatus.DUPLICATE, "Plan already exists.", existing.id)
            raise DuplicatePlanError(existing.id, date)

        if not can_generate_plan(market.status):
            _log_attempt(db, account_id, date, market.status, PlanLogStatus.BLOCKED, "Market is closed.")
            raise PlanBlockedError("Market is closed. Plan generation is disabled.")

        try:
            snapshot = await ensure_regime_snapshot(db, self.regimes, date)
            settings = get_or_create_settings(db, account_id)
            ranked = await self._rank(db, account_id, now, snapshot)

            capped = CappedIdeas([], 0.0)
            if ranked:
                capped = await build_trade_ideas(
                    self.signals,
                    watchlist if watchlist is not None else app_settings.watchlist,
                    snapshot,
                    ranked,
                    settings.max_position_pct,
                    max_ideas=max_ideas or app_settings.plan_max_ideas,
                    max_exposure_pct=max_exposure_pct if max_exposure_pct is not None else app_settings.plan_max_exposure_pct,
                )
            ideas, total, notes = build_plan_outcome(ranked, capped)

            plan = TradePlanORM(
                account_id=account_id,
                date=date,
                market_status=market.status,
                regime=_regime_payload(snapshot),
                ranked_strategies=[r.to_dict() for r in ranked],
                total_suggested_exposure_pct=total,
                notes=notes,
            )
            plan.ideas = [
                TradeIdeaORM(position=i, status=IdeaStatus.PENDING.value, **asdict(idea))
                for i, idea in enumerate(ideas)
            ]
            db.add(plan)
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = get_plan(db, account_id, date)
            _log_attempt(db, account_id, date, market.status, PlanLogStatus.DUPLICATE, "Plan already exists.", winner.id if winner else None)
            raise DuplicatePlanError(winner.id if winner else None, date)
        except Exception as exc:
            db.rollback()
            _log_attempt(db, account_id, date, market.status, PlanLogStatus.FAILED, str(exc))
            raise

        _log_attempt(db, account_id, date, market.status, PlanLogStatus.CREATED, plan_id=plan.id)
        logger.info("event=trade_plan_created account=%s date=%s ideas=%s exposure=%s", account_id, date, len(ideas), total)
        db.refresh(plan)
        return plan

    async def rescore_trade_plan(self, db: Session, plan: TradePlanORM, now: datetime | None = None) -> TradePlanORM:
        """Recompute ranking, alignment and confidence for an existing plan's ideas."""
        now = now or datetime.utcnow()
        snapshot = await ensure_regime_snapshot(db, self.regimes, get_plan_date(now))
        ranked = await self._rank(db, plan.account_id, now, snapshot)
        by_id = {r.strategy_id: r for r in ranked}
        for idea in plan.ideas:
            rank = by_id.get(idea.strategy_id)
            if rank is None:
                continue
            idea.alignment_score = float(round(rank.alignment_score))
            idea.confidence_score = float(round(compute_confidence(idea.signal_score or 0.0, rank.alignment_score, rank.score)))
        plan.ranked_strategies = [r.to_dict() for r in ranked]
        plan.regime = _regime_payload(snapshot)
        db.commit()
        db.refresh(plan)
        return plan


def skip_idea(db: Session, plan: TradePlanORM, idea_id: str, now: datetime | None = None) -> TradeIdeaORM:
    idea = find_idea(plan, idea_id)
    idea.status = IdeaStatus(idea.status).transition(IdeaStatus.SKIPPED).value
    idea.skipped_at = now or datetime.utcnow()
    log_audit(
        db,
        plan.account_id,
        "trade_idea_skipped",
        {"plan_id": plan.id, "symbol": idea.symbol, "strategy_id": idea.strategy_id, "at": idea.skipped_at.isoformat()},
        entity_type="trade_plan",
        entity_id=idea.id,
        commit=False,
    )
    db.commit()
    logger.info("event=trade_idea_skipped plan=%s idea=%s symbol=%s", plan.id, idea.id, idea.symbol)
    return idea


def link_trade_to_plan(db: Session, trade: PaperTradeORM, account_id: str) -> str | None:
    """Mark the first matching PENDING idea on the trade's plan day as executed.

    Flushes but does not commit; the caller owns the transaction.
    """
    if not trade.strategy_id or trade.trade_plan_id:
        return None
    filled_at = trade.filled_at or datetime.utcnow()
    plan = get_plan(db, account_id, get_plan_date(filled_at))
    if plan is None:
        return None
    for idea in plan.ideas:
        if idea.symbol == trade.symbol and idea.strategy_id == trade.strategy_id and idea.status == IdeaStatus.PENDING.value:
            idea.status = IdeaStatus.PENDING.transition(IdeaStatus.EXECUTED).value
            idea.executed_trade_id = trade.id
            idea.executed_at = filled_at
            trade.trade_plan_id = plan.id
            log_audit(
                db,
                account_id,
                "trade_idea_executed",
                {"plan_id": plan.id, "symbol": idea.symbol, "strategy_id": idea.strategy_id, "trade_id": trade.id},
                entity_type="trade_plan",
                entity_id=idea.id,
                commit=False,
            )
            return plan.id
    return None


def compute_plan_stats(plan: TradePlanORM, trades: Sequence[Any]) -> dict[str, Any]:
    executed = list(trades or [])
    wins = sum(1 for t in executed if float(t.realized_pnl or 0) > 0)
    r_list = [r for r in (compute_r_multiple(t) for t in executed) if r is not None]
    return {
        "planned_count": len(plan.ideas),
        "executed_count": len(executed),
        "win_rate_planned": round(wins / len(executed) * 100, 2) if executed else 0.0,
        "plan_expectancy": round(sum(r_list) / len(r_list), 2) if r_list else None,
    }


def _bar_for_date(bars: Sequence[Any], date: str) -> Any | None:
    for bar in bars or []:
        if datetime.fromtimestamp(int(bar.t), tz=timezone.utc).date().isoformat() == date:
            return bar
    return None


def detect_missed_winners(plan: TradePlanORM, bars_by_symbol: dict[str, Sequence[Any]]) -> int:
    """Count non-executed ideas whose target traded on the plan date."""
    missed = 0
    for idea in plan.ideas:
        if idea.status == IdeaStatus.EXECUTED.value:
            continue
        bar = _bar_for_date(bars_by_symbol.get(idea.symbol, []), plan.date)
        if bar is None:
            continue
        if idea.bias == "LONG" and bar.h >= idea.target:
            missed += 1
        elif idea.bias == "SHORT" and bar.l <= idea.target:
            missed += 1
    return missed


async def plan_history(db: Session, account_id: str, quote_service: Any, days: int = 14, now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or datetime.utcnow()
    start = get_plan_date(now - timedelta(days=days))
    plans = (
        db.query(TradePlanORM)
        .filter(TradePlanORM.account_id == account_id, TradePlanORM.date >= start)
        .order_by(TradePlanORM.date.desc())
        .all()
    )
    plan_ids = [p.id for p in plans]
    trades = db.query(PaperTradeORM).filter(PaperTradeORM.trade_plan_id.in_(plan_ids)).all() if plan_ids else []
    by_plan: dict[str, list[PaperTradeORM]] = {}
    for trade in trades:
        by_plan.setdefault(trade.trade_plan_id, []).append(trade)

    symbols = sorted({i.symbol for p in plans for i in p.ideas if i.status != IdeaStatus.EXECUTED.value})
    fetched = await asyncio.gather(*(quote_service.get_daily_bars(s, days=days + 7) for s in symbols), return_exceptions=True)
    bars_by_symbol = {s: bars for s, bars in zip(symbols, fetched) if not isinstance(bars, BaseException)}

    history = []
    for plan in plans:
        metrics = compute_plan_stats(plan, by_plan.get(plan.id, []))
        metrics["missed_winners"] = detect_missed_winners(plan, bars_by_symbol)
        history.append({"plan": plan, "metrics": metrics})
    return history
