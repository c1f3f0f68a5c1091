from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

CONSECUTIVE_LOSS_LIMIT = 3


@dataclass(frozen=True)
class GuardrailResult:
    ok: bool
    reason: str | None = None


@dataclass(frozen=True)
class RiskStateUpdate:
    consecutive_losses: int
    cooldown_until: datetime | None


def _fmt_pct(value: float) -> str:
    return f"{float(value):g}"


def evaluate_guardrails(
    equity: float,
    order_notional: float,
    daily_pnl: float,
    settings: Any,
    now: datetime,
) -> GuardrailResult:
    """Pre-trade hard blocks. Checks run in order and the first failure wins."""
    cooldown_until = getattr(settings, "cooldown_until", None)
    if cooldown_until is not None and now < cooldown_until:
        return GuardrailResult(False, f"Cooldown active until {cooldown_until.isoformat()}.")

    max_position_pct = float(settings.max_position_pct)
    if order_notional > equity * (max_position_pct / 100):
        return GuardrailResult(False, f"Max position size exceeded ({_fmt_pct(max_position_pct)}% of equity).")

    max_daily_loss_pct = float(settings.max_daily_loss_pct)
    if daily_pnl <= -(equity * (max_daily_loss_pct / 100)):
        return GuardrailResult(False, f"Daily loss limit reached ({_fmt_pct(max_daily_loss_pct)}% of equity).")

    return GuardrailResult(True)


def update_cooldown_state(settings: Any, realized_pnl: float, now: datetime) -> RiskStateUpdate:
    consecutive_losses = int(getattr(settings, "consecutive_losses", 0) or 0)
    cooldown_until = getattr(settings, "cooldown_until", None)

    if realized_pnl < 0:
        consecutive_losses += 1
    elif realized_pnl > 0:
        consecutive_losses = 0

    if consecutive_losses >= CONSECUTIVE_LOSS_LIMIT:
        cooldown_until = now + timedelta(hours=float(settings.cooldown_hours))

    return RiskStateUpdate(consecutive_losses=consecutive_losses, cooldown_until=cooldown_until)
