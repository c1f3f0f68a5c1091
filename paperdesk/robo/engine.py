"""Autonomous robo trader: per-user lease lock, spend quotas, signal claims and notifications."""
from __future__ import annotations

import asyncio
import enum
import logging
import math
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping
from uuid import uuid4

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paperdesk.audit.service import log_audit, query_audit
from paperdesk.config.settings import AppSettings, get_settings
from paperdesk.models import (
    AuditLogORM,
    BucketType,
    OrderSide,
    RoboLockORM,
    RoboSettingsORM,
    RoboSignalExecutionORM,
    RoboUsageORM,
    SignalExecutionStatus,
    User,
)
from paperdesk.paper_trading.service import OrderRequest
from paperdesk.robo.notifications import send_with_retry

logger = logging.getLogger(__name__)

ROBO_SETUP_TYPE = "ROBO"
ROBO_STRATEGY_TAGS = ["robo"]
DEFAULT_STRATEGY_NAME = "ROBO_PLACEHOLDER"
RELEASED_AT = datetime(1970, 1, 1)
WINDOW_NAMES = {
    BucketType.DAY.value: "daily",
    BucketType.WEEK.value: "weekly",
    BucketType.MONTH.value: "monthly",
}


class SkipReason(str, enum.Enum):
    ROBO_DISABLED = "ROBO_DISABLED"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    LOCKED = "LOCKED"
    INVALID_SIGNAL = "INVALID_SIGNAL"
    DUPLICATE_SIGNAL = "DUPLICATE_SIGNAL"
    NO_QUOTE = "NO_QUOTE"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"


@dataclass
class RoboSignal:
    symbol: str
    side: str = OrderSide.BUY.value
    qty: Any = 1
    strategy_id: str | None = None
    strategy_name: str | None = None
    stop_price: float | None = None
    signal_id: str | None = None
    generated_at: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RoboSignal":
        return cls(
            symbol=str(payload.get("symbol") or ""),
            side=str(payload.get("side") or OrderSide.BUY.value),
            qty=payload.get("qty", 1),
            strategy_id=payload.get("strategy_id"),
            strategy_name=payload.get("strategy_name"),
            stop_price=payload.get("stop_price"),
            signal_id=payload.get("signal_id"),
            generated_at=payload.get("generated_at"),
        )


@dataclass
class RoboRunResult:
    ok: bool
    executed: bool
    skipped: bool
    reason: str | None = None
    signal_id: str | None = None
    order_id: str | None = None
    notional: float | None = None
    usage_notional: float | None = None
    violations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LimitDecision:
    allowed: bool
    violations: list[str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _finite(value: Any, fallback: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def normalize_limit(limit: Any) -> float:
    """None or unparseable means unlimited; negatives clamp to 0."""
    if limit is None or limit == "":
        return math.inf
    try:
        number = float(limit)
    except (TypeError, ValueError):
        return math.inf
    if not math.isfinite(number):
        return math.inf
    return max(0.0, number)


def get_bucket_start(now: datetime, bucket_type: str) -> datetime:
    day = datetime(now.year, now.month, now.day)
    if bucket_type == BucketType.DAY.value:
        return day
    if bucket_type == BucketType.WEEK.value:
        return day - timedelta(days=day.weekday())
    if bucket_type == BucketType.MONTH.value:
        return datetime(now.year, now.month, 1)
    raise ValueError(f'Unsupported bucket type "{bucket_type}"')


def build_bucket_starts(now: datetime) -> dict[str, datetime]:
    return {b.value: get_bucket_start(now, b.value) for b in BucketType}


def check_limits(settings: RoboSettingsORM, usage: Mapping[str, Mapping[str, Any]], attempt_notional: float) -> LimitDecision:
    attempt = max(0.0, _finite(attempt_notional))
    limits = {
        BucketType.DAY.value: settings.daily_limit,
        BucketType.WEEK.value: settings.weekly_limit,
        BucketType.MONTH.value: settings.monthly_limit,
    }
    violations = [
        WINDOW_NAMES[bucket]
        for bucket, limit in limits.items()
        if _finite(usage[bucket]["spent_notional"]) + attempt > normalize_limit(limit)
    ]
    return LimitDecision(allowed=not violations, violations=violations)


# -- settings ---------------------------------------------------------------


def get_robo_settings(db: Session, user_id: str, refresh: bool = False) -> RoboSettingsORM:
    row = db.query(RoboSettingsORM).filter(RoboSettingsORM.user_id == user_id).first()
    if row is not None:
        if refresh:
            db.refresh(row)
        return row
    row = RoboSettingsORM(
        user_id=user_id,
        enabled=False,
        daily_limit=0.0,
        weekly_limit=0.0,
        monthly_limit=0.0,
        failure_streak=0,
        paused_until=None,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        row = db.query(RoboSettingsORM).filter(RoboSettingsORM.user_id == user_id).one()
    db.commit()
    return row


def settings_payload(row: RoboSettingsORM) -> dict[str, Any]:
    return {
        "enabled": bool(row.enabled),
        "daily_limit": row.daily_limit,
        "weekly_limit": row.weekly_limit,
        "monthly_limit": row.monthly_limit,
        "failure_streak": int(row.failure_streak or 0),
        "paused_until": _iso(row.paused_until),
        "updated_at": _iso(row.updated_at),
    }


def update_robo_settings(db: Session, user_id: str, updates: Mapping[str, Any], now: datetime | None = None) -> RoboSettingsORM:
    """Apply ``enabled`` and limit updates. A ``None`` limit means unlimited."""
    now = now or _utcnow()
    row = get_robo_settings(db, user_id)
    was_enabled = bool(row.enabled)
    if isinstance(updates.get("enabled"), bool):
        row.enabled = updates["enabled"]
    for key in ("daily_limit", "weekly_limit", "monthly_limit"):
        if key in updates:
            value = updates[key]
            setattr(row, key, None if value is None else max(0.0, _finite(value)))
    row.updated_at = now
    db.commit()

    log_audit(
        db,
        user_id,
        "robo_settings_updated",
        {
            "enabled": bool(row.enabled),
            "daily_limit": row.daily_limit,
            "weekly_limit": row.weekly_limit,
            "monthly_limit": row.monthly_limit,
        },
    )
    if was_enabled and not row.enabled:
        log_audit(db, user_id, "robo_disabled", {"reason": "Disabled from settings update."})
    return row


def is_circuit_breaker_active(row: RoboSettingsORM, now: datetime) -> bool:
    return row.paused_until is not None and row.paused_until > now


# -- usage ------------------------------------------------------------------


def get_usage_snapshot(db: Session, user_id: str, now: datetime | None = None) -> dict[str, dict[str, Any]]:
    now = now or _utcnow()
    starts = build_bucket_starts(now)
    rows = (
        db.query(RoboUsageORM)
        .filter(RoboUsageORM.user_id == user_id, RoboUsageORM.bucket_start.in_(list(set(starts.values()))))
        .all()
    )
    spent = {
        row.bucket_type: float(row.spent_notional or 0.0)
        for row in rows
        if starts.get(row.bucket_type) == row.bucket_start
    }
    settings = get_robo_settings(db, user_id)
    limits = {
        BucketType.DAY.value: settings.daily_limit,
        BucketType.WEEK.value: settings.weekly_limit,
        BucketType.MONTH.value: settings.monthly_limit,
    }
    snapshot: dict[str, dict[str, Any]] = {}
    for bucket, start in starts.items():
        used = spent.get(bucket, 0.0)
        limit = normalize_limit(limits[bucket])
        finite = math.isfinite(limit)
        snapshot[bucket] = {
            "bucket_type": bucket,
            "bucket_start": start.isoformat(),
            "spent_notional": used,
            "limit": limit if finite else None,
            "remaining": max(0.0, round(limit - used, 2)) if finite else None,
        }
    return snapshot


def _increment_bucket(db: Session, user_id: str, bucket_type: str, bucket_start: datetime, notional: float, now: datetime) -> None:
    stmt = (
        update(RoboUsageORM)
        .where(
            RoboUsageORM.user_id == user_id,
            RoboUsageORM.bucket_type == bucket_type,
            RoboUsageORM.bucket_start == bucket_start,
        )
        .values(spent_notional=RoboUsageORM.spent_notional + notional, updated_at=now)
    )
    if db.execute(stmt).rowcount:
        return
    try:
        with db.begin_nested():
            db.add(
                RoboUsageORM(
                    user_id=user_id,
                    bucket_type=bucket_type,
                    bucket_start=bucket_start,
                    spent_notional=notional,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # another writer inserted the bucket first
        db.execute(stmt)


def increment_usage(db: Session, user_id: str, now: datetime, notional: float) -> None:
    for bucket_type, start in build_bucket_starts(now).items():
        _increment_bucket(db, user_id, bucket_type, start, notional, now)
    db.commit()


# -- lease lock -------------------------------------------------------------


def acquire_user_lock(db: Session, user_id: str, owner: str, now: datetime, ttl_seconds: int) -> bool:
    """Compare-and-swap on the lease: take it only if expired, else insert guarded by the unique key."""
    locked_until = now + timedelta(seconds=ttl_seconds)
    result = db.execute(
        update(RoboLockORM)
        .where(RoboLockORM.user_id == user_id, RoboLockORM.locked_until <= now)
        .values(owner=owner, locked_until=locked_until)
    )
    if result.rowcount:
        db.commit()
        return True
    try:
        with db.begin_nested():
            db.add(RoboLockORM(user_id=user_id, owner=owner, locked_until=locked_until))
    except IntegrityError:
        return False
    db.commit()
    return True


def renew_user_lock(db: Session, user_id: str, owner: str, now: datetime, ttl_seconds: int) -> bool:
    result = db.execute(
        update(RoboLockORM)
        .where(RoboLockORM.user_id == user_id, RoboLockORM.owner == owner)
        .values(locked_until=now + timedelta(seconds=ttl_seconds))
    )
    db.commit()
    return bool(result.rowcount)


def release_user_lock(db: Session, user_id: str, owner: str) -> None:
    db.execute(
        update(RoboLockORM)
        .where(RoboLockORM.user_id == user_id, RoboLockORM.owner == owner)
        .values(locked_until=RELEASED_AT)
    )
    db.commit()


# -- signal claims ----------------------------------------------------------


def derive_signal_id(signal: RoboSignal, symbol: str, side: str, qty: int, now: datetime) -> str:
    explicit = str(signal.signal_id or "").strip()
    if explicit:
        return explicit
    generated_at = signal.generated_at or now.isoformat()
    return f"auto:{symbol}:{side}:{qty}:{generated_at}"


def claim_signal(
    db: Session,
    user_id: str,
    signal_id: str,
    now: datetime,
    **meta: Any,
) -> tuple[bool, RoboSignalExecutionORM | None]:
    try:
        with db.begin_nested():
            db.add(
                RoboSignalExecutionORM(
                    user_id=user_id,
                    signal_id=signal_id,
                    status=SignalExecutionStatus.PROCESSING.value,
                    started_at=now,
                    updated_at=now,
                    **meta,
                )
            )
    except IntegrityError:
        existing = (
            db.query(RoboSignalExecutionORM)
            .filter(RoboSignalExecutionORM.user_id == user_id, RoboSignalExecutionORM.signal_id == signal_id)
            .first()
        )
        return False, existing
    db.commit()
    return True, None


def mark_signal(db: Session, user_id: str, signal_id: str, now: datetime, **patch: Any) -> None:
    db.execute(
        update(RoboSignalExecutionORM)
        .where(RoboSignalExecutionORM.user_id == user_id, RoboSignalExecutionORM.signal_id == signal_id)
        .values(updated_at=now, **patch)
    )
    db.commit()


def cleanup_signal_executions(
    db: Session,
    older_than_days: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or _utcnow()
    retention = older_than_days if older_than_days is not None else get_settings().robo_signal_retention_days
    try:
        retention_days = int(retention)
    except (TypeError, ValueError):
        retention_days = 90
    if retention_days < 1:
        retention_days = 90
    cutoff = now - timedelta(days=retention_days)
    result = db.execute(delete(RoboSignalExecutionORM).where(RoboSignalExecutionORM.updated_at < cutoff))
    db.commit()
    deleted = int(result.rowcount or 0)
    logger.info("event=robo_signal_cleanup retention_days=%s deleted=%s", retention_days, deleted)
    return {"retention_days": retention_days, "cutoff": cutoff.isoformat(), "deleted_count": deleted}


def get_audit_events(
    db: Session,
    user_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[AuditLogORM]:
    return query_audit(db, subject_id=user_id, entity_type="robo", start=start, end=end, limit=limit)


class RoboTraderEngine:
    def __init__(
        self,
        broker: Any,
        quote_service: Any,
        notifier: Any,
        settings: AppSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.broker = broker
        self.quotes = quote_service
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.clock = clock

    def default_signal(self, now: datetime) -> RoboSignal:
        side = OrderSide.SELL.value if self.settings.robo_signal_side == OrderSide.SELL.value else OrderSide.BUY.value
        return RoboSignal(
            symbol=self.settings.robo_signal_symbol,
            side=side,
            qty=max(1, int(self.settings.robo_signal_qty or 1)),
            strategy_name=DEFAULT_STRATEGY_NAME,
            generated_at=now.isoformat(),
        )

    def _skip(self, db: Session, user_id: str, event: str, reason: SkipReason, payload: dict[str, Any], **extra: Any) -> RoboRunResult:
        log_audit(db, user_id, event, payload)
        logger.info("event=robo_skip user=%s reason=%s", user_id, reason.value)
        return RoboRunResult(ok=False, executed=False, skipped=True, reason=reason.value, **extra)

    def _circuit_skip(self, db: Session, user_id: str, row: RoboSettingsORM, now: datetime) -> RoboRunResult:
        return self._skip(
            db,
            user_id,
            "trade_skipped_circuit_breaker",
            SkipReason.CIRCUIT_BREAKER,
            {
                "reason": "Circuit breaker active due to recent execution failures.",
                "failure_streak": int(row.failure_streak or 0),
                "paused_until": _iso(row.paused_until),
                "at": now.isoformat(),
            },
        )

    def _mark_failure(self, db: Session, user_id: str, exc: Exception, now: datetime) -> None:
        threshold = max(1, int(self.settings.robo_circuit_failure_threshold))
        cooldown = max(1, int(self.settings.robo_circuit_cooldown_minutes))
        row = get_robo_settings(db, user_id, refresh=True)
        streak = int(row.failure_streak or 0) + 1
        row.failure_streak = streak
        row.updated_at = now
        armed = streak >= threshold
        if armed:
            row.paused_until = now + timedelta(minutes=cooldown)
        db.commit()

        reason = str(exc) or exc.__class__.__name__
        log_audit(
            db,
            user_id,
            "trade_failed",
            {"reason": reason, "failure_streak": streak, "failure_threshold": threshold, "at": now.isoformat()},
        )
        if armed:
            log_audit(
                db,
                user_id,
                "circuit_breaker_armed",
                {
                    "reason": reason,
                    "failure_streak": streak,
                    "failure_threshold": threshold,
                    "cooldown_minutes": cooldown,
                    "paused_until": _iso(row.paused_until),
                },
            )
            logger.warning("event=robo_circuit_armed user=%s streak=%s paused_until=%s", user_id, streak, row.paused_until)

    def _reset_circuit(self, db: Session, user_id: str, row: RoboSettingsORM, now: datetime) -> None:
        streak = int(row.failure_streak or 0)
        if streak == 0 and row.paused_until is None:
            return
        previous_pause = _iso(row.paused_until)
        row.failure_streak = 0
        row.paused_until = None
        row.updated_at = now
        db.commit()
        log_audit(
            db,
            user_id,
            "circuit_breaker_reset",
            {"previous_failure_streak": streak, "previous_paused_until": previous_pause, "at": now.isoformat()},
        )

    async def run_for_user(
        self,
        db: Session,
        user_id: str,
        signal: RoboSignal | None = None,
        now: datetime | None = None,
    ) -> RoboRunResult:
        now = now or self.clock()
        row = get_robo_settings(db, user_id)
        if not row.enabled:
            return self._skip(
                db, user_id, "robo_disabled", SkipReason.ROBO_DISABLED,
                {"reason": "Robo Trader is disabled.", "at": now.isoformat()},
            )
        if is_circuit_breaker_active(row, now):
            return self._circuit_skip(db, user_id, row, now)

        owner = f"{os.getpid()}:{uuid4().hex}"
        ttl = self.settings.robo_lock_ttl_seconds
        if not acquire_user_lock(db, user_id, owner, now, ttl):
            return self._skip(
                db, user_id, "trade_skipped_locked", SkipReason.LOCKED,
                {"reason": "Another Robo Trader job is currently running.", "at": now.isoformat()},
            )

        claimed_signal_id: str | None = None
        try:
            row = get_robo_settings(db, user_id, refresh=True)
            if not row.enabled:
                return self._skip(
                    db, user_id, "robo_disabled", SkipReason.ROBO_DISABLED,
                    {"reason": "Robo Trader disabled during execution.", "at": now.isoformat()},
                )
            if is_circuit_breaker_active(row, now):
                return self._circuit_skip(db, user_id, row, now)

            candidate = signal or self.default_signal(now)
            symbol = str(candidate.symbol or "").strip().upper()
            side = OrderSide.SELL.value if str(candidate.side).lower() == OrderSide.SELL.value else OrderSide.BUY.value
            qty = max(1, math.floor(_finite(candidate.qty, 1.0)))
            signal_id = derive_signal_id(candidate, symbol, side, qty, now)

            if not symbol:
                return self._skip(
                    db, user_id, "trade_skipped_invalid_signal", SkipReason.INVALID_SIGNAL,
                    {"reason": "Signal missing symbol.", "signal": asdict(candidate), "signal_id": signal_id},
                )

            claimed, existing = claim_signal(
                db,
                user_id,
                signal_id,
                now,
                symbol=symbol,
                side=side,
                qty=float(qty),
                strategy_id=candidate.strategy_id,
                strategy_name=candidate.strategy_name,
            )
            if not claimed:
                return self._skip(
                    db, user_id, "trade_skipped_duplicate_signal", SkipReason.DUPLICATE_SIGNAL,
                    {
                        "signal_id": signal_id,
                        "symbol": symbol,
                        "side": side,
                        "qty": qty,
                        "existing_status": existing.status if existing else None,
                        "existing_order_id": existing.order_id if existing else None,
                    },
                    signal_id=signal_id,
                )
            claimed_signal_id = signal_id

            quote = await self.quotes.get_quote(symbol)
            price = _finite(quote.price if quote is not None else None, math.nan)
            if not math.isfinite(price) or price <= 0:
                mark_signal(db, user_id, signal_id, now, status=SignalExecutionStatus.SKIPPED.value, reason=SkipReason.NO_QUOTE.value)
                return self._skip(
                    db, user_id, "trade_skipped_no_quote", SkipReason.NO_QUOTE,
                    {"symbol": symbol, "signal_id": signal_id, "reason": "Quote unavailable for signal symbol."},
                    signal_id=signal_id,
                )

            estimated_notional = round(price * qty, 2)
            spending = estimated_notional if side == OrderSide.BUY.value else 0.0
            usage = get_usage_snapshot(db, user_id, now)
            decision = check_limits(row, usage, spending)
            if not decision.allowed:
                mark_signal(db, user_id, signal_id, now, status=SignalExecutionStatus.SKIPPED.value, reason=SkipReason.LIMIT_EXCEEDED.value)
                return self._skip(
                    db, user_id, "trade_skipped_limit", SkipReason.LIMIT_EXCEEDED,
                    {
                        "symbol": symbol,
                        "signal_id": signal_id,
                        "side": side,
                        "qty": qty,
                        "estimated_price": price,
                        "attempt_notional": spending,
                        "violations": decision.violations,
                        "usage": usage,
                    },
                    signal_id=signal_id,
                    violations=decision.violations,
                )

            execution = await self.broker.place_order(
                db,
                OrderRequest(
                    symbol=symbol,
                    side=side,
                    qty=qty,
                    strategy_id=candidate.strategy_id,
                    setup_type=ROBO_SETUP_TYPE,
                    strategy_tags=list(ROBO_STRATEGY_TAGS),
                    stop_price=candidate.stop_price,
                ),
                now=now,
            )
            renewed_at = max(self.clock(), now)
            if not renew_user_lock(db, user_id, owner, renewed_at, ttl):
                logger.warning("event=robo_lease_lost user=%s owner=%s", user_id, owner)
                log_audit(
                    db,
                    user_id,
                    "lease_lost",
                    {"owner": owner, "signal_id": signal_id, "symbol": symbol, "at": renewed_at.isoformat()},
                )

            order = execution.order
            order_id = getattr(order, "id", None)
            executed_notional = round(_finite(getattr(order, "notional", None), estimated_notional), 2)
            usage_notional = executed_notional if side == OrderSide.BUY.value else 0.0
            increment_usage(db, user_id, now, usage_notional)

            log_audit(
                db,
                user_id,
                "trade_executed",
                {
                    "symbol": symbol,
                    "side": side,
                    "qty": qty,
                    "estimated_price": price,
                    "notional": executed_notional,
                    "usage_notional": usage_notional,
                    "signal_id": signal_id,
                    "order_id": order_id,
                    "strategy_name": candidate.strategy_name,
                    "timestamp": now.isoformat(),
                },
                entity_id=order_id,
            )
            self._reset_circuit(db, user_id, row, now)
            mark_signal(
                db,
                user_id,
                signal_id,
                now,
                status=SignalExecutionStatus.EXECUTED.value,
                order_id=order_id,
                executed_at=now,
                notional=executed_notional,
            )

            user = db.get(User, user_id)
            recipient = (user.email if user else None) or self.settings.robo_fallback_email
            delivery = await send_with_retry(
                self.notifier,
                recipient,
                {
                    "symbol": symbol,
                    "side": side,
                    "qty": qty,
                    "notional": executed_notional,
                    "estimated_price": price,
                    "timestamp": now.isoformat(),
                    "strategy_name": candidate.strategy_name,
                    "order_id": order_id,
                },
                sleep=self.sleep,
            )
            if delivery.ok and delivery.receipt is not None:
                log_audit(
                    db,
                    user_id,
                    "email_sent",
                    {
                        "to": recipient,
                        "order_id": order_id,
                        "provider": delivery.receipt.provider,
                        "message_id": delivery.receipt.message_id,
                        "attempts": delivery.attempts,
                    },
                )
            else:
                log_audit(db, user_id, "email_failed", {"to": recipient, "order_id": order_id, "error": delivery.error})

            logger.info("event=robo_trade_executed user=%s symbol=%s side=%s qty=%s order=%s", user_id, symbol, side, qty, order_id)
            return RoboRunResult(
                ok=True,
                executed=True,
                skipped=False,
                signal_id=signal_id,
                order_id=order_id,
                notional=executed_notional,
                usage_notional=usage_notional,
            )
        except Exception as exc:
            db.rollback()
            try:
                self._mark_failure(db, user_id, exc, now)
                if claimed_signal_id:
                    mark_signal(
                        db,
                        user_id,
                        claimed_signal_id,
                        now,
                        status=SignalExecutionStatus.FAILED.value,
                        reason=(str(exc) or exc.__class__.__name__)[:512],
                    )
            except Exception:
                db.rollback()
                logger.exception("event=robo_failure_bookkeeping_failed user=%s", user_id)
            raise
        finally:
            release_user_lock(db, user_id, owner)

    async def run_scheduler_tick(self, db: Session, now: datetime | None = None) -> dict[str, int]:
        user_ids = [
            user_id
            for (user_id,) in db.query(RoboSettingsORM.user_id).filter(RoboSettingsORM.enabled.is_(True)).all()
        ]
        summary = {"users": len(user_ids), "executed": 0, "skipped": 0, "errors": 0}
        for user_id in user_ids:
            try:
                result = await self.run_for_user(db, user_id, now=now)
            except Exception as exc:
                db.rollback()
                summary["errors"] += 1
                logger.exception("event=robo_tick_user_failed user=%s", user_id)
                log_audit(
                    db,
                    user_id,
                    "trade_skipped_scheduler_error",
                    {"reason": str(exc) or exc.__class__.__name__},
                )
                continue
            if result.executed:
                summary["executed"] += 1
            else:
                summary["skipped"] += 1
        return summary


_engine: RoboTraderEngine | None = None


def get_robo_engine() -> RoboTraderEngine:
    global _engine
    if _engine is None:
        from paperdesk.paper_trading.service import get_paper_broker
        from paperdesk.robo.notifications import Notifier

        broker = get_paper_broker()
        _engine = RoboTraderEngine(broker, broker.quotes, Notifier())
    return _engine
