from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from paperdesk.adapters.base import OHLCV


def bars_to_frame(bars: Sequence[OHLCV]) -> pd.DataFrame:
    frame = pd.DataFrame(
        [{"t": b.t, "Open": b.o, "High": b.h, "Low": b.l, "Close": b.c, "Volume": b.v} for b in bars],
        columns=["t", "Open", "High", "Low", "Close", "Volume"],
    )
    return frame.sort_values("t").reset_index(drop=True)


def sma(close: pd.Series, period: int) -> float | None:
    if len(close) < period or period <= 0:
        return None
    return float(close.tail(period).mean())


def atr(df: pd.DataFrame, period: int = 14) -> float | None:
    """Mean true range over the last ``period`` bars."""
    if len(df) < period + 1:
        return None
    prev_close = df["Close"].shift(1)
    tr = pd.concat(
        [(df["High"] - df["Low"]).abs(), (df["High"] - prev_close).abs(), (df["Low"] - prev_close).abs()],
        axis=1,
    ).max(axis=1)
    return float(tr.iloc[1:].tail(period).mean())


def rsi(close: pd.Series, period: int = 14) -> float | None:
    if len(close) <= period:
        return None
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / avg_loss.where(avg_loss != 0, np.nan)
    out = (100.0 - (100.0 / (1.0 + rs))).fillna(100.0)
    return float(out.iloc[-1])


def rolling_volatility(close: pd.Series, period: int = 20) -> float | None:
    """Population std-dev of the last ``period`` simple returns."""
    if len(close) < period + 1:
        return None
    returns = close.pct_change().tail(period)
    return float(returns.std(ddof=0))


def slope(values: pd.Series, period: int = 10) -> float | None:
    if len(values) < period:
        return None
    tail = values.tail(period).to_numpy(dtype=float)
    x = np.arange(len(tail), dtype=float)
    if np.ptp(x) == 0:
        return 0.0
    return float(np.polyfit(x, tail, 1)[0])


def average_dollar_volume(df: pd.DataFrame, period: int = 20) -> float | None:
    if df.empty:
        return None
    tail = df.tail(period)
    return float((tail["Close"] * tail["Volume"]).mean())


def average_range_pct(df: pd.DataFrame, period: int = 20) -> float | None:
    if df.empty:
        return None
    tail = df.tail(period)
    pct = (tail["High"] - tail["Low"]) / tail["Close"].replace(0, np.nan)
    return float(pct.fillna(0.0).mean())
