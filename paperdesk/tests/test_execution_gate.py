from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from paperdesk.risk_engine import compute
from paperdesk.risk_engine.execution_gate import evaluate_execution_gate

START = datetime(2026, 1, 1, 15, 0)


def _trades(r_values):
    return [
        SimpleNamespace(r_multiple=r, realized_pnl=r * 100, filled_at=START + timedelta(hours=i), stop_price=None)
        for i, r in enumerate(r_values)
    ]


def _alternating(count: int):
    return [2.0 if i % 2 == 0 else -1.0 for i in range(count)]


def _idea(**overrides):
    base = {"confidence_score": 80.0, "alignment_score": 60.0, "position_size_pct": 5.0, "entry": 100.0, "stop": 95.0}
    base.update(overrides)
    return SimpleNamespace(**base)


def _account(**overrides):
    base = {"equity": 100_000.0, "positions_value": 0.0, "daily_pnl": 0.0}
    base.update(overrides)
    return SimpleNamespace(**base)


def _settings(**overrides):
    base = {"starting_cash": 100_000.0, "consecutive_losses": 0}
    base.update(overrides)
    return SimpleNamespace(**base)


def test_thirty_qualifying_trades_are_eligible() -> None:
    result = evaluate_execution_gate(_idea(), _trades(_alternating(30)), _account(), _settings())
    assert result.reasons_blocked == []
    assert result.eligible is True
    assert result.strategy_stats.trade_count == 30
    assert result.strategy_stats.expectancy == pytest.approx(0.5)
    assert result.strategy_stats.sharpe_like == pytest.approx(0.33)
    assert result.projected_stats.recommended_qty == 50
    assert result.projected_stats.post_trade_exposure_pct == pytest.approx(5.0)


def test_twenty_nine_trades_always_blocked_on_count() -> None:
    result = evaluate_execution_gate(_idea(), _trades(_alternating(29)), _account(), _settings())
    assert result.eligible is False
    assert "Strategy trade count below 30." in result.reasons_blocked


def test_sharpe_like_is_capped_at_five() -> None:
    values = [10.0, 10.1] * 15
    result = evaluate_execution_gate(_idea(), _trades(values), _account(), _settings())
    assert result.strategy_stats.sharpe_like == 5.0
    assert result.eligible is True


def test_zero_std_uses_expectancy_as_sharpe() -> None:
    assert compute.sharpe_like(0.8, 0.0) == 0.8
    assert compute.std_dev([1.0]) == 0.0


def test_recent_average_requires_five_values() -> None:
    assert compute.recent_avg_r([1.0, 2.0, 3.0, 4.0]) is None
    assert compute.recent_avg_r([9.0, 1.0, 2.0, 3.0, 4.0, 5.0]) == pytest.approx(3.0)


def test_every_blocking_condition_is_reported() -> None:
    result = evaluate_execution_gate(
        _idea(confidence_score=10.0, alignment_score=10.0, entry=10_000_000.0),
        [],
        _account(daily_pnl=-2_000.0, positions_value=20_000.0),
        _settings(consecutive_losses=3),
    )
    assert result.eligible is False
    assert result.reasons_blocked == [
        "Strategy trade count below 30.",
        "Strategy expectancy must be > 0.",
        "Strategy Sharpe-like ratio below 0.3.",
        "Insufficient recent R data.",
        "Plan confidence score below 70.",
        "Plan alignment score below 55.",
        "Daily drawdown exceeds 1.5%.",
        "Consecutive losses threshold reached.",
        "Post-trade exposure exceeds 20%.",
        "Position size too small to execute.",
        "Circuit breaker active for the day.",
    ]
    assert result.account_stats.daily_drawdown == pytest.approx(2.0)


def test_negative_recent_r_blocks() -> None:
    values = [3.0] * 25 + [-1.0] * 5
    result = evaluate_execution_gate(_idea(), _trades(values), _account(), _settings())
    assert "Last 5 trades avg R below 0." in result.reasons_blocked


def test_circuit_breaker_from_drawdown_alone() -> None:
    result = evaluate_execution_gate(_idea(), _trades(_alternating(30)), _account(daily_pnl=-1_600.0), _settings())
    assert result.reasons_blocked == ["Daily drawdown exceeds 1.5%.", "Circuit breaker active for the day."]
