from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from paperdesk.adapters.quotes import QuoteService
from paperdesk.api.deps import get_broker, get_db, get_plan_service, get_quotes, http_error
from paperdesk.errors import PaperDeskError
from paperdesk.models import TradeIdeaORM, TradePlanLogORM, TradePlanORM
from paperdesk.paper_trading.service import PaperBroker
from paperdesk.trade_plan.engine import TradePlanService, get_plan, get_plan_by_id, get_plan_date, plan_history, skip_idea

router = APIRouter(prefix="/api/trade-plan", tags=["trade-plan"])


class GeneratePlanRequest(BaseModel):
    watchlist: list[str] | None = None
    max_ideas: int | None = Field(default=None, ge=1, le=20)
    max_exposure_pct: float | None = Field(default=None, gt=0, le=100)


def idea_to_dict(idea: TradeIdeaORM) -> dict[str, Any]:
    return {
        "id": idea.id,
        "symbol": idea.symbol,
        "strategy_id": idea.strategy_id,
        "bias": idea.bias,
        "entry": idea.entry,
        "stop": idea.stop,
        "target": idea.target,
        "position_size_pct": idea.position_size_pct,
        "signal_score": idea.signal_score,
        "confidence_score": idea.confidence_score,
        "alignment_score": idea.alignment_score,
        "reason": idea.reason,
        "status": idea.status,
        "executed_trade_id": idea.executed_trade_id,
        "executed_at": idea.executed_at.isoformat() if idea.executed_at else None,
        "skipped_at": idea.skipped_at.isoformat() if idea.skipped_at else None,
    }


def plan_to_dict(plan: TradePlanORM) -> dict[str, Any]:
    return {
        "id": plan.id,
        "date": plan.date,
        "market_status": plan.market_status,
        "regime": plan.regime,
        "ranked_strategies": plan.ranked_strategies,
        "trade_ideas": [idea_to_dict(i) for i in plan.ideas],
        "total_suggested_exposure_pct": plan.total_suggested_exposure_pct,
        "notes": plan.notes,
        "created_at": plan.created_at.isoformat() if plan.created_at else None,
    }


@router.get("/today")
def get_today_plan(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    plan = get_plan(db, broker.account_id, get_plan_date())
    if plan is None:
        raise HTTPException(status_code=404, detail="No trade plan for today")
    return plan_to_dict(plan)


@router.post("/generate")
async def generate_plan(
    payload: GeneratePlanRequest | None = None,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
    service: TradePlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    payload = payload or GeneratePlanRequest()
    try:
        plan = await service.generate_trade_plan(
            db,
            broker.account_id,
            watchlist=[s.strip().upper() for s in payload.watchlist if s.strip()] if payload.watchlist else None,
            max_ideas=payload.max_ideas,
            max_exposure_pct=payload.max_exposure_pct,
        )
    except PaperDeskError as exc:
        raise http_error(exc) from exc
    return plan_to_dict(plan)


@router.get("/history")
async def get_plan_history(
    days: int = Query(default=14, ge=1, le=90),
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
    quotes: QuoteService = Depends(get_quotes),
) -> dict[str, Any]:
    rows = await plan_history(db, broker.account_id, quotes, days=days)
    return {"items": [{"plan": plan_to_dict(r["plan"]), "metrics": r["metrics"]} for r in rows]}


@router.get("/logs")
def get_plan_logs(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
) -> dict[str, Any]:
    rows = (
        db.query(TradePlanLogORM)
        .filter(TradePlanLogORM.account_id == broker.account_id)
        .order_by(TradePlanLogORM.attempted_at.desc())
        .limit(limit)
        .all()
    )
    return {
        "items": [
            {
                "id": row.id,
                "date": row.date,
                "market_status": row.market_status,
                "status": row.status,
                "reason": row.reason,
                "plan_id": row.plan_id,
                "attempted_at": row.attempted_at.isoformat(),
            }
            for row in rows
        ]
    }


@router.get("/{plan_id}")
def get_plan_detail(plan_id: str, db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    try:
        return plan_to_dict(get_plan_by_id(db, broker.account_id, plan_id))
    except PaperDeskError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/rescore")
async def rescore_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
    service: TradePlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    try:
        plan = get_plan_by_id(db, broker.account_id, plan_id)
        return plan_to_dict(await service.rescore_trade_plan(db, plan))
    except PaperDeskError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/ideas/{idea_id}/skip")
def skip_plan_idea(
    plan_id: str,
    idea_id: str,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
) -> dict[str, Any]:
    try:
        plan = get_plan_by_id(db, broker.account_id, plan_id)
        return idea_to_dict(skip_idea(db, plan, idea_id))
    except PaperDeskError as exc:
        raise http_error(exc) from exc
