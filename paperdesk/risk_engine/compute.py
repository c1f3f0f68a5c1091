import math
from datetime import datetime
from typing import Any, Iterable, Sequence

import numpy as np

from paperdesk.paper_trading.ledger import compute_r_multiple

SHARPE_CAP = 5.0
RECENT_WINDOW = 5


def r_values(trades: Iterable[Any]) -> list[float]:
    """Finite R-multiples in fill order; trades without a computable R are skipped."""
    ordered = sorted(trades, key=lambda t: getattr(t, "filled_at", None) or datetime.min)
    out = []
    for trade in ordered:
        r = compute_r_multiple(trade)
        if r is not None and math.isfinite(r):
            out.append(float(r))
    return out


def expectancy(values: Sequence[float]) -> float | None:
    if len(values) == 0:
        return None
    return float(np.mean(values))


def std_dev(values: Sequence[float]) -> float:
    # population standard deviation
    if len(values) <= 1:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def sharpe_like(exp: float | None, std: float) -> float:
    if std == 0:
        raw = exp or 0.0
    else:
        raw = (exp or 0.0) / std
    return min(raw, SHARPE_CAP)


def recent_avg_r(values: Sequence[float], window: int = RECENT_WINDOW) -> float | None:
    if len(values) < window:
        return None
    return float(np.mean(values[-window:]))


def win_rate(trades: Sequence[Any]) -> float:
    if not trades:
        return 0.0
    wins = sum(1 for t in trades if float(getattr(t, "realized_pnl", 0) or 0) > 0)
    return wins / len(trades) * 100


def max_drawdown_pct(trades: Sequence[Any]) -> float:
    """Largest drop of cumulative realized P&L from its running peak, as a percent of the peak."""
    cumulative = np.cumsum([float(getattr(t, "realized_pnl", 0) or 0) for t in trades])
    if cumulative.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(np.maximum(cumulative, 0.0))
    peak = float(peaks[-1])
    if peak <= 0:
        return 0.0
    return float(np.max(peaks - cumulative) / peak * 100)
