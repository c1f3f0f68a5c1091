from __future__ import annotations

from datetime import date, datetime
from itertools import permutations

import pytest

from paperdesk.paper_trading.ledger import (
    LedgerFill,
    Position,
    apply_trade,
    build_positions,
    calculate_cash,
    calculate_daily_pnl,
    calculate_position_metrics,
    compute_r_multiple,
)


def _fill(side: str, qty: float, price: float, **kwargs) -> LedgerFill:
    return LedgerFill(symbol=kwargs.pop("symbol", "AAPL"), side=side, qty=qty, price=price, **kwargs)


def test_same_direction_add_blends_average_cost() -> None:
    pos, realized = apply_trade(Position("AAPL", 10, 100.0), _fill("buy", 10, 110.0))
    assert pos.qty == 20
    assert pos.avg_cost == pytest.approx(105.0)
    assert realized == 0.0


def test_partial_close_realizes_at_pre_trade_average() -> None:
    pos, realized = apply_trade(Position("AAPL", 10, 100.0), _fill("sell", 4, 110.0))
    assert realized == pytest.approx(40.0)
    assert pos.qty == 6
    assert pos.avg_cost == pytest.approx(100.0)


def test_flip_resets_average_to_fill_price() -> None:
    pos, realized = apply_trade(Position("AAPL", 10, 100.0), _fill("sell", 15, 90.0))
    assert realized == pytest.approx(-100.0)
    assert pos.qty == -5
    assert pos.avg_cost == pytest.approx(90.0)


def test_flat_position_has_zero_average() -> None:
    pos, realized = apply_trade(Position("AAPL", 10, 100.0), _fill("sell", 10, 120.0))
    assert realized == pytest.approx(200.0)
    assert pos.qty == 0
    assert pos.avg_cost == 0.0


def test_short_cover_realizes_inverse_pnl() -> None:
    pos, _ = apply_trade(Position("TSLA"), _fill("sell", 10, 50.0, symbol="TSLA"))
    assert pos.qty == -10
    pos, realized = apply_trade(pos, _fill("buy", 10, 40.0, symbol="TSLA"))
    assert realized == pytest.approx(100.0)
    assert pos.qty == 0


def test_build_positions_tracks_symbols_and_total_realized() -> None:
    trades = [
        _fill("buy", 10, 100.0),
        _fill("buy", 5, 20.0, symbol="MSFT"),
        _fill("sell", 5, 110.0),
        _fill("sell", 5, 18.0, symbol="MSFT"),
    ]
    book = build_positions(trades)
    assert book.positions["AAPL"].qty == 5
    assert book.positions["MSFT"].qty == 0
    assert book.total_realized == pytest.approx(50.0 - 10.0)
    assert [p.symbol for p in book.open_positions()] == ["AAPL"]


def test_build_positions_accepts_mappings() -> None:
    book = build_positions([{"symbol": "AAPL", "side": "buy", "qty": 2, "price": 10.0}])
    assert book.positions["AAPL"].avg_cost == pytest.approx(10.0)


def test_reordering_same_timestamp_trades_keeps_final_quantity_and_cash() -> None:
    """Only quantity and cash are order independent.

    Average cost and realized P&L follow weighted-average cost, so they shift with
    the order the fills are folded in.
    """
    trades = [_fill("buy", 10, 100.0), _fill("sell", 5, 110.0), _fill("buy", 3, 105.0, commission=1.0)]
    outcomes = set()
    for order in permutations(trades):
        book = build_positions(order)
        outcomes.add((book.positions["AAPL"].qty, round(calculate_cash(order, 10_000.0), 6)))
    assert outcomes == {(8, round(10_000.0 - 1000.0 + 550.0 - 315.0 - 1.0, 6))}


def test_cash_debits_buys_and_credits_sells_with_commission() -> None:
    trades = [_fill("buy", 5, 100.0, commission=1.0), _fill("sell", 5, 110.0, commission=1.0)]
    assert calculate_cash(trades, 1000.0) == pytest.approx(1048.0)


def test_daily_pnl_only_counts_the_requested_day() -> None:
    trades = [
        _fill("sell", 1, 10.0, realized_pnl=25.0, filled_at=datetime(2026, 2, 18, 15, 0)),
        _fill("sell", 1, 10.0, realized_pnl=-5.0, filled_at=datetime(2026, 2, 18, 20, 0)),
        _fill("sell", 1, 10.0, realized_pnl=100.0, filled_at=datetime(2026, 2, 17, 20, 0)),
        _fill("buy", 1, 10.0),
    ]
    assert calculate_daily_pnl(trades, date(2026, 2, 18)) == pytest.approx(20.0)
    assert calculate_daily_pnl(trades, datetime(2026, 2, 17, 1, 0)) == pytest.approx(100.0)


def test_position_metrics_long_and_short() -> None:
    long_metrics = calculate_position_metrics(Position("AAPL", 10, 100.0), 110.0)
    assert long_metrics["market_value"] == pytest.approx(1100.0)
    assert long_metrics["unrealized_pnl"] == pytest.approx(100.0)
    assert long_metrics["unrealized_pnl_pct"] == pytest.approx(10.0)

    short_metrics = calculate_position_metrics(Position("AAPL", -10, 100.0), 110.0)
    assert short_metrics["unrealized_pnl"] == pytest.approx(-100.0)

    assert calculate_position_metrics(Position("AAPL"), 50.0)["market_value"] == 0.0


def test_r_multiple_prefers_stored_value() -> None:
    assert compute_r_multiple({"r_multiple": 1.5, "stop_price": 90.0, "qty": 1, "price": 100.0}) == 1.5


def test_r_multiple_derived_from_stop() -> None:
    trade = {"stop_price": 95.0, "qty": 10, "price": 100.0, "realized_pnl": 100.0}
    assert compute_r_multiple(trade) == pytest.approx(2.0)
    assert compute_r_multiple({"qty": 10, "price": 100.0, "realized_pnl": 100.0}) is None
