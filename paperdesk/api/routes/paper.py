from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from paperdesk.api.deps import get_broker, get_db, http_error
from paperdesk.errors import PaperDeskError
from paperdesk.models import PaperOrderORM, PaperSettingsORM, PaperTradeORM
from paperdesk.paper_trading.accounts import AccountSnapshot
from paperdesk.paper_trading.service import OrderRequest, PaperBroker

router = APIRouter(prefix="/api/paper", tags=["paper"])


class SettingsUpdateRequest(BaseModel):
    starting_cash: float | None = Field(default=None, gt=0)
    slippage_bps: float | None = Field(default=None, ge=0)
    commission: float | None = Field(default=None, ge=0)
    max_position_pct: float | None = Field(default=None, gt=0)
    max_daily_loss_pct: float | None = Field(default=None, gt=0)
    cooldown_hours: float | None = Field(default=None, ge=0)


class OrderCreateRequest(BaseModel):
    symbol: str
    side: str
    qty: float
    order_type: str = "market"
    limit_price: float | None = None
    max_price_per_share: float | None = None
    allow_extended_hours: bool = True
    strategy_id: str | None = None
    setup_type: str | None = None
    strategy_tags: list[str] | None = None
    stop_price: float | None = None


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def settings_to_dict(row: PaperSettingsORM) -> dict[str, Any]:
    return {
        "account_id": row.account_id,
        "starting_cash": row.starting_cash,
        "slippage_bps": row.slippage_bps,
        "commission": row.commission,
        "max_position_pct": row.max_position_pct,
        "max_daily_loss_pct": row.max_daily_loss_pct,
        "cooldown_hours": row.cooldown_hours,
        "consecutive_losses": row.consecutive_losses,
        "cooldown_until": _iso(row.cooldown_until),
    }


def order_to_dict(row: PaperOrderORM) -> dict[str, Any]:
    return {
        "id": row.id,
        "symbol": row.symbol,
        "side": row.side,
        "qty": row.qty,
        "order_type": row.order_type,
        "limit_price": row.limit_price,
        "max_price_per_share": row.max_price_per_share,
        "market_session": row.market_session,
        "status": row.status,
        "fill_price": row.fill_price,
        "commission": row.commission,
        "notional": row.notional,
        "strategy_id": row.strategy_id,
        "filled_at": _iso(row.filled_at),
    }


def trade_to_dict(row: PaperTradeORM) -> dict[str, Any]:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "symbol": row.symbol,
        "side": row.side,
        "qty": row.qty,
        "price": row.price,
        "market_session": row.market_session,
        "strategy_id": row.strategy_id,
        "setup_type": row.setup_type,
        "strategy_tags": row.strategy_tags or [],
        "stop_price": row.stop_price,
        "risk_per_share": row.risk_per_share,
        "r_multiple": row.r_multiple,
        "regime_at_trade": row.regime_at_trade,
        "commission": row.commission,
        "notional": row.notional,
        "realized_pnl": row.realized_pnl,
        "trade_plan_id": row.trade_plan_id,
        "filled_at": _iso(row.filled_at),
    }


def account_to_dict(snapshot: AccountSnapshot) -> dict[str, Any]:
    return asdict(snapshot)


@router.get("/settings")
def get_paper_settings(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return settings_to_dict(broker.get_settings(db))


@router.put("/settings")
def update_paper_settings(
    payload: SettingsUpdateRequest,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
) -> dict[str, Any]:
    return settings_to_dict(broker.update_settings(db, payload.model_dump(exclude_none=True)))


@router.get("/account")
async def get_paper_account(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return account_to_dict(await broker.get_account(db))


@router.get("/positions")
async def get_paper_positions(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return {"items": [asdict(p) for p in await broker.get_positions(db)]}


@router.get("/trades")
def get_paper_trades(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return {"items": [trade_to_dict(t) for t in broker.get_trades(db)]}


@router.get("/orders")
def get_paper_orders(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return {"items": [order_to_dict(o) for o in broker.get_orders(db)]}


@router.get("/equity")
def get_paper_equity(db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    return {
        "items": [
            {
                "timestamp": _iso(row.timestamp),
                "equity": row.equity,
                "cash": row.cash,
                "positions_value": row.positions_value,
                "daily_pnl": row.daily_pnl,
                "total_pnl": row.total_pnl,
            }
            for row in broker.get_equity_curve(db)
        ]
    }


@router.post("/orders")
async def place_paper_order(
    payload: OrderCreateRequest,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
) -> dict[str, Any]:
    try:
        result = await broker.place_order(db, OrderRequest(**payload.model_dump()))
    except PaperDeskError as exc:
        raise http_error(exc) from exc
    return {
        "order": order_to_dict(result.order),
        "trade": trade_to_dict(result.trade),
        "account": account_to_dict(result.account),
        "trade_plan_id": result.trade_plan_id,
    }


@router.get("/orders/{order_id}")
def get_paper_order(order_id: str, db: Session = Depends(get_db), broker: PaperBroker = Depends(get_broker)) -> dict[str, Any]:
    row = (
        db.query(PaperOrderORM)
        .filter(PaperOrderORM.id == order_id, PaperOrderORM.account_id == broker.account_id)
        .first()
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_to_dict(row)
