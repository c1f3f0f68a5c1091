"""Tests for market calendar module."""
from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest

from paperdesk.shared.market_calendar import (
    get_market_status,
    is_extended_hours,
    is_market_open,
    next_market_open,
)

ET = ZoneInfo("America/New_York")


class TestNYSE:
    def test_open_during_session(self):
        dt = datetime(2026, 2, 18, 11, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is True

    def test_closed_at_boundary(self):
        dt = datetime(2026, 2, 18, 16, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is False

    def test_open_at_boundary(self):
        dt = datetime(2026, 2, 18, 9, 30, tzinfo=ET)
        assert is_market_open("NYSE", dt) is True

    def test_pre_market(self):
        dt = datetime(2026, 2, 18, 7, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is False
        assert is_extended_hours("NYSE", dt) is True

    def test_after_hours(self):
        dt = datetime(2026, 2, 18, 18, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is False
        assert is_extended_hours("NYSE", dt) is True

    def test_closed_saturday(self):
        dt = datetime(2026, 2, 21, 11, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is False
        assert is_extended_hours("NYSE", dt) is False

    def test_closed_mlk_day(self):
        dt = datetime(2026, 1, 19, 11, 0, tzinfo=ET)
        assert is_market_open("NYSE", dt) is False

    def test_nasdaq_shares_nyse_holidays(self):
        dt = datetime(2026, 1, 19, 11, 0, tzinfo=ET)
        assert is_market_open("NASDAQ", dt) is False

    def test_naive_datetime_is_utc(self):
        # 15:00 UTC is 10:00 in New York during winter
        assert is_market_open("NYSE", datetime(2026, 2, 18, 15, 0)) is True
        assert is_market_open("NYSE", datetime(2026, 2, 18, 14, 0)) is False


class TestNextMarketOpen:
    def test_next_open_from_after_hours(self):
        dt = datetime(2026, 2, 18, 18, 0, tzinfo=ET)
        nxt = next_market_open("NYSE", dt)
        assert nxt.date().isoformat() == "2026-02-19"
        assert nxt.time() == time(9, 30)

    def test_next_open_from_friday_evening(self):
        dt = datetime(2026, 2, 20, 18, 0, tzinfo=ET)
        nxt = next_market_open("NYSE", dt)
        assert nxt.weekday() == 0

    def test_next_open_skips_holiday(self):
        dt = datetime(2026, 1, 16, 18, 0, tzinfo=ET)
        nxt = next_market_open("NYSE", dt)
        assert nxt.date().isoformat() == "2026-01-20"

    def test_unknown_exchange_raises(self):
        with pytest.raises(ValueError, match="Unknown exchange"):
            is_market_open("FAKE", datetime.now())


class TestMarketStatus:
    def test_open_status_reports_todays_close(self):
        status = get_market_status(datetime(2026, 2, 18, 16, 0))
        assert status.status == "OPEN"
        assert status.is_open
        assert status.next_close == datetime(2026, 2, 18, 21, 0)
        assert status.next_open == datetime(2026, 2, 19, 14, 30)

    def test_before_open_reports_same_day(self):
        status = get_market_status(datetime(2026, 2, 18, 12, 0))
        assert status.status == "CLOSED"
        assert status.next_open == datetime(2026, 2, 18, 14, 30)
        assert status.next_close == datetime(2026, 2, 18, 21, 0)

    def test_weekend_rolls_to_monday(self):
        status = get_market_status(datetime(2026, 2, 21, 16, 0))
        assert status.status == "CLOSED"
        assert status.next_open == datetime(2026, 2, 23, 14, 30)
        assert status.as_of == datetime(2026, 2, 21, 16, 0)
