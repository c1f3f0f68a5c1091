"""Read side of the paper account: settings row, trade log and derived snapshot."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paperdesk.config.settings import get_settings
from paperdesk.models import PaperEquityORM, PaperOrderORM, PaperSettingsORM, PaperTradeORM
from paperdesk.paper_trading.ledger import (
    build_positions,
    calculate_cash,
    calculate_daily_pnl,
    calculate_position_metrics,
)

EDITABLE_SETTINGS = (
    "starting_cash",
    "slippage_bps",
    "commission",
    "max_position_pct",
    "max_daily_loss_pct",
    "cooldown_hours",
)


@dataclass
class PositionView:
    symbol: str
    qty: float
    avg_cost: float
    market_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_pct: float


@dataclass
class AccountSnapshot:
    cash: float
    positions_value: float
    equity: float
    daily_pnl: float
    total_pnl: float
    positions: list[PositionView] = field(default_factory=list)


def get_or_create_settings(db: Session, account_id: str) -> PaperSettingsORM:
    row = db.query(PaperSettingsORM).filter(PaperSettingsORM.account_id == account_id).first()
    if row is not None:
        return row
    defaults = get_settings()
    row = PaperSettingsORM(
        account_id=account_id,
        starting_cash=defaults.starting_cash,
        slippage_bps=defaults.slippage_bps,
        commission=defaults.commission,
        max_position_pct=defaults.max_position_pct,
        max_daily_loss_pct=defaults.max_daily_loss_pct,
        cooldown_hours=defaults.cooldown_hours,
        consecutive_losses=0,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        # created concurrently
        row = db.query(PaperSettingsORM).filter(PaperSettingsORM.account_id == account_id).one()
    db.commit()
    return row


def update_settings(db: Session, account_id: str, updates: dict[str, Any]) -> PaperSettingsORM:
    row = get_or_create_settings(db, account_id)
    for key in EDITABLE_SETTINGS:
        value = updates.get(key)
        if value is not None:
            setattr(row, key, float(value))
    db.commit()
    db.refresh(row)
    return row


def list_trades(db: Session, account_id: str, since: datetime | None = None, strategy_id: str | None = None) -> list[PaperTradeORM]:
    query = db.query(PaperTradeORM).filter(PaperTradeORM.account_id == account_id)
    if since is not None:
        query = query.filter(PaperTradeORM.filled_at >= since)
    if strategy_id is not None:
        query = query.filter(PaperTradeORM.strategy_id == strategy_id)
    return query.order_by(PaperTradeORM.filled_at.asc(), PaperTradeORM.id.asc()).all()


def list_orders(db: Session, account_id: str) -> list[PaperOrderORM]:
    return (
        db.query(PaperOrderORM)
        .filter(PaperOrderORM.account_id == account_id)
        .order_by(PaperOrderORM.filled_at.desc())
        .all()
    )


def equity_curve(db: Session, account_id: str) -> list[PaperEquityORM]:
    return (
        db.query(PaperEquityORM)
        .filter(PaperEquityORM.account_id == account_id)
        .order_by(PaperEquityORM.timestamp.asc())
        .all()
    )


async def get_positions(trades: list[PaperTradeORM], quote_service: Any) -> list[PositionView]:
    book = build_positions(trades)
    open_positions = book.open_positions()
    quotes = await quote_service.get_quotes([p.symbol for p in open_positions]) if open_positions else []
    prices = {q.symbol: q.price for q in quotes}
    out = []
    for pos in open_positions:
        market_price = prices.get(pos.symbol) or pos.avg_cost or 0.0
        metrics = calculate_position_metrics(pos, market_price)
        out.append(
            PositionView(
                symbol=pos.symbol,
                qty=pos.qty,
                avg_cost=round(pos.avg_cost, 2),
                market_price=market_price,
                market_value=metrics["market_value"],
                unrealized_pnl=metrics["unrealized_pnl"],
                unrealized_pnl_pct=metrics["unrealized_pnl_pct"],
            )
        )
    return out


async def get_account(db: Session, account_id: str, quote_service: Any, now: datetime | None = None) -> AccountSnapshot:
    """Rebuild the account from the full trade log and current quotes."""
    now = now or datetime.utcnow()
    settings = get_or_create_settings(db, account_id)
    trades = list_trades(db, account_id)
    positions = await get_positions(trades, quote_service)
    cash = calculate_cash(trades, settings.starting_cash)
    positions_value = sum(p.market_value for p in positions)
    equity = cash + positions_value
    return AccountSnapshot(
        cash=cash,
        positions_value=positions_value,
        equity=equity,
        daily_pnl=calculate_daily_pnl(trades, now),
        total_pnl=equity - settings.starting_cash,
        positions=positions,
    )
