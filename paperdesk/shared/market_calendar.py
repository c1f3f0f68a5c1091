"""US equity market hours with holiday support.

Naive datetimes passed in are treated as UTC, matching how the rest of the
application stores timestamps.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import NamedTuple
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

_HOLIDAYS_PATH = Path(__file__).resolve().parents[1] / "data" / "holidays.json"


class ExchangeSession(NamedTuple):
    tz: ZoneInfo
    open_time: time
    close_time: time
    pre_market_open: time | None = None
    after_hours_close: time | None = None


_US_SESSION = ExchangeSession(
    tz=ZoneInfo("America/New_York"),
    open_time=time(9, 30),
    close_time=time(16, 0),
    pre_market_open=time(4, 0),
    after_hours_close=time(20, 0),
)

SESSIONS: dict[str, ExchangeSession] = {
    "NYSE": _US_SESSION,
    "NASDAQ": _US_SESSION,
}


@dataclass(frozen=True)
class MarketStatus:
    status: str
    as_of: datetime
    next_open: datetime
    next_close: datetime

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"


def _load_holidays() -> dict[str, list[str]]:
    """Load holiday dates from JSON. Returns {exchange: [YYYY-MM-DD, ...]}."""
    if not _HOLIDAYS_PATH.exists():
        logger.warning("holidays.json not found at %s, no holidays loaded", _HOLIDAYS_PATH)
        return {}
    try:
        return json.loads(_HOLIDAYS_PATH.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.exception("Failed to parse holidays.json")
        return {}


_holidays_cache: dict[str, set[date]] | None = None


def _get_holidays(exchange: str) -> set[date]:
    global _holidays_cache
    if _holidays_cache is None:
        raw = _load_holidays()
        _holidays_cache = {}
        for ex, dates in raw.items():
            _holidays_cache[ex.upper()] = {date.fromisoformat(d) for d in dates}
    exchange_upper = exchange.upper()
    if exchange_upper == "NASDAQ":
        exchange_upper = "NYSE"
    return _holidays_cache.get(exchange_upper, set())


def _session(exchange: str) -> ExchangeSession:
    ex = exchange.upper()
    session = SESSIONS.get(ex)
    if session is None:
        raise ValueError(f"Unknown exchange: {ex}")
    return session


def _local(session: ExchangeSession, dt: datetime | None) -> datetime:
    now = dt or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(session.tz)


def _to_utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def is_trading_day(exchange: str, day: date) -> bool:
    return day.weekday() < 5 and day not in _get_holidays(exchange)


def is_market_open(exchange: str, dt: datetime | None = None) -> bool:
    """Check whether the given exchange is in its regular session at ``dt``.

    If dt is None, uses current wall-clock time.
    Returns False on weekends and holidays.
    """
    session = _session(exchange)
    local = _local(session, dt)
    if not is_trading_day(exchange, local.date()):
        return False
    return session.open_time <= local.time() < session.close_time


def is_extended_hours(exchange: str, dt: datetime | None = None) -> bool:
    """True if in pre-market or after-hours."""
    session = _session(exchange)
    if session.pre_market_open is None:
        return False
    local = _local(session, dt)
    if not is_trading_day(exchange, local.date()):
        return False

    t = local.time()
    in_pre = session.pre_market_open <= t < session.open_time
    in_after = session.close_time <= t < (session.after_hours_close or session.close_time)
    return in_pre or in_after


def _session_bounds(session: ExchangeSession, day: date) -> tuple[datetime, datetime]:
    open_at = datetime.combine(day, session.open_time, tzinfo=session.tz)
    close_at = datetime.combine(day, session.close_time, tzinfo=session.tz)
    return open_at, close_at


def _next_trading_day(exchange: str, day: date) -> date:
    candidate = day + timedelta(days=1)
    for _ in range(15):
        if is_trading_day(exchange, candidate):
            return candidate
        candidate += timedelta(days=1)
    return candidate


def next_market_open(exchange: str, dt: datetime | None = None) -> datetime:
    """Return the next regular-session open strictly after ``dt`` (exchange-local, tz-aware)."""
    session = _session(exchange)
    local = _local(session, dt)
    day = local.date()
    if is_trading_day(exchange, day):
        open_at, _ = _session_bounds(session, day)
        if local < open_at:
            return open_at
    open_at, _ = _session_bounds(session, _next_trading_day(exchange, day))
    return open_at


def get_market_status(now: datetime | None = None, exchange: str = "NYSE") -> MarketStatus:
    """OPEN/CLOSED status with the next open and close, all as naive UTC."""
    session = _session(exchange)
    local = _local(session, now)
    day = local.date()

    if is_trading_day(exchange, day):
        open_at, close_at = _session_bounds(session, day)
        if open_at <= local < close_at:
            status = "OPEN"
            next_open, _ = _session_bounds(session, _next_trading_day(exchange, day))
            next_close = close_at
        elif local < open_at:
            status = "CLOSED"
            next_open, next_close = open_at, close_at
        else:
            status = "CLOSED"
            next_open, next_close = _session_bounds(session, _next_trading_day(exchange, day))
    else:
        status = "CLOSED"
        next_open, next_close = _session_bounds(session, _next_trading_day(exchange, day))

    return MarketStatus(
        status=status,
        as_of=_to_utc_naive(local),
        next_open=_to_utc_naive(next_open),
        next_close=_to_utc_naive(next_close),
    )
