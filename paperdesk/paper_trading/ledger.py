"""Position and cash accounting.

Positions are never stored. Every read folds the ordered trade log again, so the
ledger stays the only source of truth.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class Position:
    symbol: str = ""
    qty: float = 0.0
    avg_cost: float = 0.0
    realized_pnl: float = 0.0


@dataclass(frozen=True)
class LedgerFill:
    symbol: str
    side: str
    qty: float
    price: float
    commission: float = 0.0
    realized_pnl: float = 0.0
    filled_at: datetime | None = None


@dataclass
class PositionBook:
    positions: dict[str, Position] = field(default_factory=dict)
    total_realized: float = 0.0

    def open_positions(self) -> list[Position]:
        return [pos for pos in self.positions.values() if pos.qty != 0]


def _attr(trade: Any, name: str, default: Any = None) -> Any:
    if isinstance(trade, Mapping):
        return trade.get(name, default)
    return getattr(trade, name, default)


def _f(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
        return out if out == out else default
    except (TypeError, ValueError):
        return default


def apply_trade(position: Position, trade: Any) -> tuple[Position, float]:
    """Apply one fill to a position and return ``(new_position, realized_pnl)``.

    Adding in the same direction blends the average cost. Trading against the position
    realizes P&L on the closed quantity at the pre-trade average. A flip starts the
    residual at the fill price and a flat result resets the average to zero.
    """
    qty = _f(_attr(trade, "qty"))
    price = _f(_attr(trade, "price"))
    trade_qty = qty if str(_attr(trade, "side")).lower() == "buy" else -qty

    current_qty = position.qty
    current_avg = position.avg_cost
    next_qty = current_qty + trade_qty
    realized = 0.0

    if current_qty == 0 or current_qty * trade_qty > 0:
        total = abs(current_qty) + abs(trade_qty)
        next_avg = 0.0 if total == 0 else (abs(current_qty) * current_avg + abs(trade_qty) * price) / total
    else:
        closing = min(abs(current_qty), abs(trade_qty))
        if current_qty > 0:
            realized = (price - current_avg) * closing
        else:
            realized = (current_avg - price) * closing
        if next_qty == 0:
            next_avg = 0.0
        elif current_qty * next_qty < 0:
            next_avg = price
        else:
            next_avg = current_avg

    updated = Position(
        symbol=position.symbol or str(_attr(trade, "symbol") or ""),
        qty=next_qty,
        avg_cost=next_avg,
        realized_pnl=position.realized_pnl + realized,
    )
    return updated, realized


def build_positions(trades: Iterable[Any]) -> PositionBook:
    """Fold trades (already in fill order) into a per-symbol position book."""
    book = PositionBook()
    for trade in trades:
        symbol = str(_attr(trade, "symbol") or "")
        current = book.positions.get(symbol) or Position(symbol=symbol)
        updated, realized = apply_trade(current, trade)
        book.positions[symbol] = updated
        book.total_realized += realized
    return book


def calculate_cash(trades: Iterable[Any], starting_cash: float) -> float:
    cash = float(starting_cash)
    for trade in trades:
        notional = _f(_attr(trade, "price")) * _f(_attr(trade, "qty"))
        commission = _f(_attr(trade, "commission"))
        if str(_attr(trade, "side")).lower() == "buy":
            cash -= notional + commission
        else:
            cash += notional - commission
    return cash


def calculate_daily_pnl(trades: Iterable[Any], day: date | datetime | None = None) -> float:
    """Sum of realized P&L booked on ``day`` (UTC calendar date)."""
    if day is None:
        day = datetime.utcnow()
    target = day.date() if isinstance(day, datetime) else day
    total = 0.0
    for trade in trades:
        filled_at = _attr(trade, "filled_at")
        if filled_at is not None and filled_at.date() == target:
            total += _f(_attr(trade, "realized_pnl"))
    return total


def calculate_position_metrics(position: Position, market_price: float) -> dict[str, float]:
    qty = position.qty
    if not qty:
        return {"market_value": 0.0, "unrealized_pnl": 0.0, "unrealized_pnl_pct": 0.0}
    market_value = qty * market_price
    if qty > 0:
        unrealized = (market_price - position.avg_cost) * qty
    else:
        unrealized = (position.avg_cost - market_price) * abs(qty)
    cost_basis = abs(qty * position.avg_cost) or 1.0
    return {
        "market_value": market_value,
        "unrealized_pnl": unrealized,
        "unrealized_pnl_pct": unrealized / cost_basis * 100,
    }


def compute_r_multiple(trade: Any) -> float | None:
    """Stored R-multiple, or realized P&L over the initial risk when a stop is known."""
    stored = _attr(trade, "r_multiple")
    if stored is not None:
        return _f(stored)
    stop = _attr(trade, "stop_price")
    qty = _f(_attr(trade, "qty"))
    if stop is None or qty <= 0:
        return None
    risk_per_share = _attr(trade, "risk_per_share")
    if risk_per_share is None:
        risk_per_share = abs(_f(_attr(trade, "price")) - _f(stop))
    risk = _f(risk_per_share) * qty
    if risk <= 0:
        return None
    return _f(_attr(trade, "realized_pnl")) / risk
