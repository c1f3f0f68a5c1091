from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from paperdesk.config.settings import AppSettings
from paperdesk.models import AuditLogORM, RoboLockORM, RoboSignalExecutionORM, RoboUsageORM, User
from paperdesk.paper_trading.service import PaperBroker
from paperdesk.robo import engine as engine_module
from paperdesk.robo import scheduler as scheduler_module
from paperdesk.robo.engine import (
    RELEASED_AT,
    RoboSignal,
    RoboTraderEngine,
    acquire_user_lock,
    build_bucket_starts,
    check_limits,
    cleanup_signal_executions,
    get_robo_settings,
    get_usage_snapshot,
    increment_usage,
    normalize_limit,
    update_robo_settings,
)
from paperdesk.robo.notifications import (
    NotificationReceipt,
    Notifier,
    format_trade_email,
    format_trade_subject,
    send_with_retry,
)
from paperdesk.robo.scheduler import RoboSchedulerService
from paperdesk.tests.conftest import MARKET_OPEN_UTC

UNLIMITED = {"daily_limit": None, "weekly_limit": None, "monthly_limit": None}


class FakeBroker:
    def __init__(self, price: float = 100.0, error: Exception | None = None, fail_times: int = 0) -> None:
        self.price = price
        self.error = error
        self.fail_times = fail_times
        self.requests = []
        self.on_place = None

    async def place_order(self, db, request, now=None):
        self.requests.append(request)
        if self.on_place is not None:
            await self.on_place()
        if self.error is not None and (self.fail_times == 0 or len(self.requests) <= self.fail_times):
            raise self.error
        order = SimpleNamespace(id=f"ord-{len(self.requests)}", notional=self.price * request.qty)
        return SimpleNamespace(order=order)


class FakeNotifier:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.sent = []

    async def send(self, to, details):
        self.sent.append((to, details))
        if len(self.sent) <= self.failures:
            raise RuntimeError("smtp unavailable")
        return NotificationReceipt(provider="fake", message_id=f"msg-{len(self.sent)}")


class ManualClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def __call__(self) -> datetime:
        return self.now


class SleepRecorder:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _user(db, username: str = "alice", email: str | None = "alice@example.com") -> str:
    user = User(username=username, email=email)
    db.add(user)
    db.commit()
    return user.id


def _enable(db, user_id: str, **limits) -> None:
    update_robo_settings(db, user_id, {"enabled": True, **UNLIMITED, **limits}, now=MARKET_OPEN_UTC)


def _events(db, user_id: str) -> list[str]:
    rows = db.query(AuditLogORM).filter(AuditLogORM.subject_id == user_id).all()
    return [row.event_type for row in rows]


def _engine(quotes, broker=None, notifier=None, **settings) -> RoboTraderEngine:
    return RoboTraderEngine(
        broker or FakeBroker(),
        quotes,
        notifier or FakeNotifier(),
        settings=AppSettings(**settings),
        sleep=SleepRecorder(),
    )


def _run(engine, db, user_id, signal=None, now=MARKET_OPEN_UTC):
    return asyncio.run(engine.run_for_user(db, user_id, signal=signal, now=now))


def test_bucket_starts_for_a_wednesday() -> None:
    starts = build_bucket_starts(datetime(2026, 2, 18, 16, 30))
    assert starts == {
        "day": datetime(2026, 2, 18),
        "week": datetime(2026, 2, 16),
        "month": datetime(2026, 2, 1),
    }


def test_limit_normalization() -> None:
    assert normalize_limit(None) == math.inf
    assert normalize_limit(-5) == 0.0
    assert normalize_limit("250") == 250.0


def test_check_limits_reports_every_violated_window() -> None:
    settings = SimpleNamespace(daily_limit=150.0, weekly_limit=150.0, monthly_limit=None)
    usage = {bucket: {"spent_notional": 100.0} for bucket in ("day", "week", "month")}
    decision = check_limits(settings, usage, 100.0)
    assert decision.allowed is False
    assert decision.violations == ["daily", "weekly"]
    assert check_limits(settings, usage, 50.0).allowed is True


def test_new_users_start_disabled_with_zero_limits(db) -> None:
    user_id = _user(db)
    row = get_robo_settings(db, user_id)
    assert row.enabled is False
    assert (row.daily_limit, row.weekly_limit, row.monthly_limit) == (0.0, 0.0, 0.0)


def test_usage_increments_accumulate(db) -> None:
    user_id = _user(db)
    update_robo_settings(db, user_id, {"daily_limit": 500.0, "weekly_limit": None}, now=MARKET_OPEN_UTC)
    increment_usage(db, user_id, MARKET_OPEN_UTC, 100.0)
    increment_usage(db, user_id, MARKET_OPEN_UTC + timedelta(hours=1), 50.0)

    snapshot = get_usage_snapshot(db, user_id, MARKET_OPEN_UTC)
    assert snapshot["day"]["spent_notional"] == 150.0
    assert snapshot["day"]["remaining"] == 350.0
    assert snapshot["week"]["limit"] is None
    assert snapshot["month"]["limit"] == 0.0
    assert db.query(RoboUsageORM).count() == 3


def test_disabling_is_audited(db) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    update_robo_settings(db, user_id, {"enabled": False}, now=MARKET_OPEN_UTC)
    assert sorted(_events(db, user_id)) == ["robo_disabled", "robo_settings_updated", "robo_settings_updated"]


def test_disabled_user_is_skipped(db, quotes) -> None:
    user_id = _user(db)
    broker = FakeBroker()
    result = _run(_engine(quotes, broker), db, user_id)
    assert result.skipped is True
    assert result.reason == "ROBO_DISABLED"
    assert broker.requests == []


def test_execution_updates_usage_audit_and_signal(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    notifier = FakeNotifier()
    engine = _engine(quotes, notifier=notifier)
    result = _run(engine, db, user_id, RoboSignal("aapl", qty=2, signal_id="sig-1", strategy_name="Momo"))

    assert result.executed is True
    assert result.order_id == "ord-1"
    assert result.usage_notional == 200.0
    request = engine.broker.requests[0]
    assert (request.symbol, request.side, request.qty, request.setup_type) == ("AAPL", "buy", 2, "ROBO")

    snapshot = get_usage_snapshot(db, user_id, MARKET_OPEN_UTC)
    assert snapshot["day"]["spent_notional"] == 200.0
    execution = db.query(RoboSignalExecutionORM).one()
    assert (execution.status, execution.order_id, execution.notional) == ("executed", "ord-1", 200.0)
    assert notifier.sent[0][0] == "alice@example.com"
    assert {"trade_executed", "email_sent"} <= set(_events(db, user_id))
    assert db.query(RoboLockORM).one().locked_until == RELEASED_AT


def test_concurrent_run_for_same_user_is_locked_out(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    broker = FakeBroker()
    engine = _engine(quotes, broker)
    nested = []

    async def overlapping_run():
        broker.on_place = None
        nested.append(await engine.run_for_user(db, user_id, RoboSignal("AAPL", signal_id="sig-b"), now=MARKET_OPEN_UTC))

    broker.on_place = overlapping_run
    first = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-a"))

    assert first.executed is True
    assert nested[0].skipped is True
    assert nested[0].reason == "LOCKED"
    assert len(broker.requests) == 1
    assert "trade_skipped_locked" in _events(db, user_id)

    # the lease is released, so a later run can take it again
    later = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-c"), now=MARKET_OPEN_UTC + timedelta(seconds=1))
    assert later.executed is True


def test_expired_lease_can_be_taken_over(db) -> None:
    assert acquire_user_lock(db, "u1", "worker-a", MARKET_OPEN_UTC, 30) is True
    assert acquire_user_lock(db, "u1", "worker-b", MARKET_OPEN_UTC + timedelta(seconds=10), 30) is False
    assert acquire_user_lock(db, "u1", "worker-b", MARKET_OPEN_UTC + timedelta(seconds=30), 30) is True
    assert db.query(RoboLockORM).one().owner == "worker-b"


def test_lease_is_extended_after_a_slow_order(db, quotes, monkeypatch) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    clock = ManualClock(MARKET_OPEN_UTC)
    broker = FakeBroker()
    leases = []

    async def slow_order():
        leases.append(db.query(RoboLockORM).one().locked_until)
        clock.advance(45)

    broker.on_place = slow_order
    engine = RoboTraderEngine(broker, quotes, FakeNotifier(), settings=AppSettings(), sleep=SleepRecorder(), clock=clock)
    monkeypatch.setattr(engine_module, "release_user_lock", lambda db, user_id, owner: None)

    result = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-slow"))

    assert result.executed is True
    assert leases == [MARKET_OPEN_UTC + timedelta(seconds=30)]
    assert db.query(RoboLockORM).one().locked_until == MARKET_OPEN_UTC + timedelta(seconds=75)
    assert "lease_lost" not in _events(db, user_id)


def test_lost_lease_is_audited(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    broker = FakeBroker()

    async def stolen_lease():
        db.execute(update(RoboLockORM).where(RoboLockORM.user_id == user_id).values(owner="other-worker"))
        db.commit()

    broker.on_place = stolen_lease
    result = _run(_engine(quotes, broker), db, user_id, RoboSignal("AAPL", signal_id="sig-stolen"))

    assert result.executed is True
    assert "lease_lost" in _events(db, user_id)
    assert db.query(RoboLockORM).one().owner == "other-worker"


def test_duplicate_signal_is_not_executed_twice(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    engine = _engine(quotes)
    _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))
    again = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"), now=MARKET_OPEN_UTC + timedelta(minutes=1))
    assert again.reason == "DUPLICATE_SIGNAL"
    assert len(engine.broker.requests) == 1
    payload = db.query(AuditLogORM).filter(AuditLogORM.event_type == "trade_skipped_duplicate_signal").one().payload_json
    assert payload["existing_status"] == "executed"


def test_invalid_and_unquoted_signals_are_skipped(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    engine = _engine(quotes)
    assert _run(engine, db, user_id, RoboSignal("")).reason == "INVALID_SIGNAL"
    result = _run(engine, db, user_id, RoboSignal("ZZZZ", signal_id="sig-z"))
    assert result.reason == "NO_QUOTE"
    execution = db.query(RoboSignalExecutionORM).one()
    assert (execution.status, execution.reason) == ("skipped", "NO_QUOTE")
    assert engine.broker.requests == []


def test_buy_over_quota_is_blocked_with_all_violations(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id, daily_limit=150.0, weekly_limit=150.0)
    increment_usage(db, user_id, MARKET_OPEN_UTC, 100.0)
    engine = _engine(quotes)

    result = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))
    assert result.reason == "LIMIT_EXCEEDED"
    assert result.violations == ["daily", "weekly"]
    assert engine.broker.requests == []


def test_sells_do_not_consume_quota(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id, daily_limit=0.0, weekly_limit=0.0, monthly_limit=0.0)
    result = _run(_engine(quotes), db, user_id, RoboSignal("AAPL", side="sell", signal_id="sig-1"))
    assert result.executed is True
    assert result.usage_notional == 0.0
    assert get_usage_snapshot(db, user_id, MARKET_OPEN_UTC)["day"]["spent_notional"] == 0.0


def test_notification_retries_with_linear_backoff(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    engine = _engine(quotes, notifier=FakeNotifier(failures=2))
    result = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))

    assert result.executed is True
    assert engine.sleep.delays == [0.25, 0.5]
    sent = db.query(AuditLogORM).filter(AuditLogORM.event_type == "email_sent").one()
    assert sent.payload_json["attempts"] == 3


def test_notification_failure_does_not_fail_the_trade(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    engine = _engine(quotes, notifier=FakeNotifier(failures=5))
    result = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))
    assert result.executed is True
    assert engine.notifier.sent and len(engine.notifier.sent) == 3
    failed = db.query(AuditLogORM).filter(AuditLogORM.event_type == "email_failed").one()
    assert failed.payload_json["error"] == "smtp unavailable"


def test_missing_recipient_is_reported_by_log_notifier(db, quotes) -> None:
    user_id = _user(db, email=None)
    _enable(db, user_id)
    engine = _engine(quotes, notifier=Notifier(AppSettings(notification_provider="log")))
    _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))
    failed = db.query(AuditLogORM).filter(AuditLogORM.event_type == "email_failed").one()
    assert failed.payload_json["error"] == "Recipient email is required for Robo Trader notifications."


def test_repeated_failures_arm_then_reset_circuit_breaker(db, quotes) -> None:
    user_id = _user(db)
    _enable(db, user_id)
    broker = FakeBroker(error=RuntimeError("broker down"), fail_times=3)
    engine = _engine(quotes, broker)

    for i in range(3):
        with pytest.raises(RuntimeError, match="broker down"):
            _run(engine, db, user_id, RoboSignal("AAPL", signal_id=f"sig-{i}"), now=MARKET_OPEN_UTC + timedelta(minutes=i))

    row = get_robo_settings(db, user_id, refresh=True)
    assert row.failure_streak == 3
    assert row.paused_until == MARKET_OPEN_UTC + timedelta(minutes=62)
    events = _events(db, user_id)
    assert events.count("trade_failed") == 3
    assert events.count("circuit_breaker_armed") == 1
    assert {e.status for e in db.query(RoboSignalExecutionORM).all()} == {"failed"}
    assert db.query(RoboLockORM).one().locked_until == RELEASED_AT

    paused = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-p"), now=MARKET_OPEN_UTC + timedelta(minutes=30))
    assert paused.reason == "CIRCUIT_BREAKER"

    resumed = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-r"), now=MARKET_OPEN_UTC + timedelta(minutes=63))
    assert resumed.executed is True
    row = get_robo_settings(db, user_id, refresh=True)
    assert (row.failure_streak, row.paused_until) == (0, None)
    assert "circuit_breaker_reset" in _events(db, user_id)


def test_scheduler_tick_isolates_user_failures(db, quotes) -> None:
    first = _user(db, "alice")
    second = _user(db, "bob", "bob@example.com")
    idle = _user(db, "carol")
    _enable(db, first)
    _enable(db, second)
    get_robo_settings(db, idle)
    broker = FakeBroker(error=RuntimeError("broker down"), fail_times=1)

    summary = asyncio.run(_engine(quotes, broker).run_scheduler_tick(db, now=MARKET_OPEN_UTC))

    assert summary == {"users": 2, "executed": 1, "skipped": 0, "errors": 1}
    assert db.query(AuditLogORM).filter(AuditLogORM.event_type == "trade_skipped_scheduler_error").count() == 1
    assert len(broker.requests) == 2


def test_real_broker_fill_counts_against_quota(db, quotes, regime_detector) -> None:
    user_id = _user(db)
    _enable(db, user_id, daily_limit=1000.0)
    engine = _engine(quotes, PaperBroker(quotes, regime_detector, account_id="default"))
    result = _run(engine, db, user_id, RoboSignal("AAPL", signal_id="sig-1"))

    assert result.executed is True
    assert result.notional == 100.05
    assert get_usage_snapshot(db, user_id, MARKET_OPEN_UTC)["day"]["spent_notional"] == 100.05
    executed = db.query(AuditLogORM).filter(AuditLogORM.event_type == "trade_executed").one()
    assert executed.entity_id == result.order_id


def test_cleanup_removes_stale_signal_rows(db) -> None:
    for signal_id, age in (("old", 40), ("new", 5)):
        db.add(
            RoboSignalExecutionORM(
                user_id="u1",
                signal_id=signal_id,
                status="executed",
                started_at=MARKET_OPEN_UTC - timedelta(days=age),
                updated_at=MARKET_OPEN_UTC - timedelta(days=age),
            )
        )
    db.commit()

    result = cleanup_signal_executions(db, older_than_days=30, now=MARKET_OPEN_UTC)
    assert result["deleted_count"] == 1
    assert result["retention_days"] == 30
    assert [r.signal_id for r in db.query(RoboSignalExecutionORM).all()] == ["new"]
    assert cleanup_signal_executions(db, older_than_days=0, now=MARKET_OPEN_UTC)["retention_days"] == 90


def test_scheduler_service_runs_tick_and_reports_status(session_factory, quotes, monkeypatch) -> None:
    monkeypatch.setattr(scheduler_module, "cleanup_signal_executions", lambda db, now=None: {"deleted_count": 0})
    service = RoboSchedulerService(session_factory)
    engine = _engine(quotes)

    async def scenario():
        await service.start(engine, interval_seconds=3600)
        summary = await service.run_once(now=MARKET_OPEN_UTC)
        await service.stop()
        return summary

    summary = asyncio.run(scenario())
    assert summary == {"users": 0, "executed": 0, "skipped": 0, "errors": 0}
    status = service.status_snapshot()
    assert status["running"] is False
    assert status["last_summary"] == summary
    assert service.run_cleanup()["deleted_count"] == 0


def test_trade_email_text() -> None:
    details = {
        "symbol": "AAPL",
        "side": "buy",
        "qty": 2,
        "notional": 200.1,
        "estimated_price": 100.05,
        "timestamp": "2026-02-18T16:00:00",
        "strategy_name": None,
        "order_id": "ord-1",
    }
    assert format_trade_subject(details) == "Robo Trader BUY AAPL"
    body = format_trade_email(details)
    assert "Notional: $200.10" in body
    assert "Strategy: N/A" in body
    assert body.endswith("Disclaimer: Values are estimates and execution details may differ.")


def test_send_with_retry_gives_up_after_three_attempts() -> None:
    notifier = FakeNotifier(failures=10)
    sleep = SleepRecorder()
    result = asyncio.run(send_with_retry(notifier, "a@example.com", {}, sleep=sleep))
    assert result.ok is False
    assert result.attempts == 3
    assert sleep.delays == [0.25, 0.5]
