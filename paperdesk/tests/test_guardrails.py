from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

from paperdesk.risk_engine.guardrails import evaluate_guardrails, update_cooldown_state

NOW = datetime(2026, 2, 18, 16, 0)


def _settings(**overrides):
    base = {
        "max_position_pct": 5.0,
        "max_daily_loss_pct": 2.0,
        "cooldown_hours": 4.0,
        "consecutive_losses": 0,
        "cooldown_until": None,
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def test_order_within_limits_passes() -> None:
    result = evaluate_guardrails(100_000.0, 4_000.0, 0.0, _settings(), NOW)
    assert result.ok is True
    assert result.reason is None


def test_position_size_limit() -> None:
    result = evaluate_guardrails(100_000.0, 5_000.01, 0.0, _settings(), NOW)
    assert result.ok is False
    assert result.reason == "Max position size exceeded (5% of equity)."
    assert evaluate_guardrails(100_000.0, 5_000.0, 0.0, _settings(), NOW).ok is True


def test_daily_loss_limit_is_inclusive() -> None:
    result = evaluate_guardrails(100_000.0, 1_000.0, -2_000.0, _settings(), NOW)
    assert result.ok is False
    assert result.reason == "Daily loss limit reached (2% of equity)."
    assert evaluate_guardrails(100_000.0, 1_000.0, -1_999.0, _settings(), NOW).ok is True


def test_cooldown_checked_first_and_expires() -> None:
    until = NOW + timedelta(hours=1)
    settings = _settings(cooldown_until=until)
    blocked = evaluate_guardrails(100_000.0, 50_000.0, -5_000.0, settings, NOW)
    assert blocked.ok is False
    assert blocked.reason == f"Cooldown active until {until.isoformat()}."
    assert evaluate_guardrails(100_000.0, 100.0, 0.0, settings, until).ok is True


def test_third_consecutive_loss_starts_cooldown() -> None:
    settings = _settings()
    for expected in (1, 2):
        update = update_cooldown_state(settings, -10.0, NOW)
        assert update.consecutive_losses == expected
        assert update.cooldown_until is None
        settings.consecutive_losses = update.consecutive_losses

    update = update_cooldown_state(settings, -10.0, NOW)
    assert update.consecutive_losses == 3
    assert update.cooldown_until == NOW + timedelta(hours=4)


def test_win_resets_and_flat_trade_leaves_streak() -> None:
    settings = _settings(consecutive_losses=2)
    assert update_cooldown_state(settings, 0.0, NOW).consecutive_losses == 2
    assert update_cooldown_state(settings, 5.0, NOW).consecutive_losses == 0
