from __future__ import annotations

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paperdesk.shared.db import Base
from paperdesk.trade_plan.state import IdeaStatus


class OrderSide(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, enum.Enum):
    MARKET = "market"
    LIMIT = "limit"


class MarketSession(str, enum.Enum):
    REGULAR = "regular"
    EXTENDED = "extended"


class PlanLogStatus(str, enum.Enum):
    CREATED = "CREATED"
    BLOCKED = "BLOCKED"
    DUPLICATE = "DUPLICATE"
    FAILED = "FAILED"


class BucketType(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class SignalExecutionStatus(str, enum.Enum):
    PROCESSING = "processing"
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PaperSettingsORM(Base):
    """Account configuration plus the mutable risk state read by the guardrails."""

    __tablename__ = "paper_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    starting_cash: Mapped[float] = mapped_column(Float, default=100_000.0)
    slippage_bps: Mapped[float] = mapped_column(Float, default=5.0)
    commission: Mapped[float] = mapped_column(Float, default=0.0)
    max_position_pct: Mapped[float] = mapped_column(Float, default=5.0)
    max_daily_loss_pct: Mapped[float] = mapped_column(Float, default=2.0)
    cooldown_hours: Mapped[float] = mapped_column(Float, default=4.0)
    consecutive_losses: Mapped[int] = mapped_column(Integer, default=0)
    cooldown_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class PaperOrderORM(Base):
    __tablename__ = "paper_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    side: Mapped[str] = mapped_column(String(8), index=True)
    qty: Mapped[float] = mapped_column(Float)
    order_type: Mapped[str] = mapped_column(String(16), default=OrderType.MARKET.value)
    limit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_price_per_share: Mapped[float | None] = mapped_column(Float, nullable=True)
    allow_extended_hours: Mapped[bool] = mapped_column(Boolean, default=True)
    market_session: Mapped[str] = mapped_column(String(16), default=MarketSession.REGULAR.value)
    strategy_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    setup_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    strategy_tags: Mapped[list] = mapped_column(JSON, default=list)
    stop_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="filled", index=True)
    fill_price: Mapped[float] = mapped_column(Float)
    commission: Mapped[float] = mapped_column(Float, default=0.0)
    slippage_bps: Mapped[float] = mapped_column(Float, default=0.0)
    notional: Mapped[float] = mapped_column(Float)
    filled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class PaperTradeORM(Base):
    __tablename__ = "paper_trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("paper_orders.id", ondelete="CASCADE"), index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    side: Mapped[str] = mapped_column(String(8), index=True)
    qty: Mapped[float] = mapped_column(Float)
    price: Mapped[float] = mapped_column(Float)
    market_session: Mapped[str] = mapped_column(String(16), default=MarketSession.REGULAR.value)
    strategy_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    setup_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    strategy_tags: Mapped[list] = mapped_column(JSON, default=list)
    stop_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk_per_share: Mapped[float | None] = mapped_column(Float, nullable=True)
    r_multiple: Mapped[float | None] = mapped_column(Float, nullable=True)
    regime_at_trade: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    commission: Mapped[float] = mapped_column(Float, default=0.0)
    notional: Mapped[float] = mapped_column(Float)
    realized_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    trade_plan_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("trade_plans.id", ondelete="SET NULL"), nullable=True, index=True
    )
    filled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class PaperEquityORM(Base):
    __tablename__ = "paper_equity"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    equity: Mapped[float] = mapped_column(Float)
    cash: Mapped[float] = mapped_column(Float)
    positions_value: Mapped[float] = mapped_column(Float)
    daily_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    total_pnl: Mapped[float] = mapped_column(Float, default=0.0)


class PaperGuardrailEventORM(Base):
    __tablename__ = "paper_guardrail_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    order_notional: Mapped[float] = mapped_column(Float)
    reason: Mapped[str] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class RegimeSnapshotORM(Base):
    __tablename__ = "regime_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    date: Mapped[str] = mapped_column(String(10), unique=True, index=True)
    trend_chop: Mapped[str] = mapped_column(String(16))
    vol: Mapped[str] = mapped_column(String(16))
    risk: Mapped[str] = mapped_column(String(16))
    notes: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def as_dict(self) -> dict:
        return {
            "date": self.date,
            "trend_chop": self.trend_chop,
            "vol": self.vol,
            "risk": self.risk,
            "notes": list(self.notes or []),
        }


class TradePlanORM(Base):
    __tablename__ = "trade_plans"
    __table_args__ = (UniqueConstraint("account_id", "date", name="uq_trade_plan_account_date"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    date: Mapped[str] = mapped_column(String(10), index=True)
    market_status: Mapped[str] = mapped_column(String(16), default="OPEN")
    regime: Mapped[dict] = mapped_column(JSON, default=dict)
    ranked_strategies: Mapped[list] = mapped_column(JSON, default=list)
    total_suggested_exposure_pct: Mapped[float] = mapped_column(Float, default=0.0)
    notes: Mapped[str] = mapped_column(String(512), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ideas: Mapped[list[TradeIdeaORM]] = relationship(
        back_populates="plan",
        order_by="TradeIdeaORM.position",
        cascade="all, delete-orphan",
    )


class TradeIdeaORM(Base):
    __tablename__ = "trade_ideas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    plan_id: Mapped[str] = mapped_column(String(36), ForeignKey("trade_plans.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    strategy_id: Mapped[str] = mapped_column(String(64), index=True)
    bias: Mapped[str] = mapped_column(String(8))
    entry: Mapped[float] = mapped_column(Float)
    stop: Mapped[float] = mapped_column(Float)
    target: Mapped[float] = mapped_column(Float)
    position_size_pct: Mapped[float] = mapped_column(Float)
    signal_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float)
    alignment_score: Mapped[float] = mapped_column(Float)
    reason: Mapped[str] = mapped_column(String(512), default="")
    status: Mapped[str] = mapped_column(String(16), default=IdeaStatus.PENDING.value, index=True)
    executed_trade_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    skipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    plan: Mapped[TradePlanORM] = relationship(back_populates="ideas")


class TradePlanLogORM(Base):
    __tablename__ = "trade_plan_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    market_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    reason: Mapped[str] = mapped_column(String(512), default="")
    plan_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class ExecutionAuditLogORM(Base):
    __tablename__ = "execution_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    plan_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    idea_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    strategy_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    eligible: Mapped[bool] = mapped_column(Boolean, default=False)
    reasons_blocked: Mapped[list] = mapped_column(JSON, default=list)
    account_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class AuditLogORM(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    subject_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class RoboSettingsORM(Base):
    __tablename__ = "robo_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    daily_limit: Mapped[float | None] = mapped_column(Float, nullable=True, default=0.0)
    weekly_limit: Mapped[float | None] = mapped_column(Float, nullable=True, default=0.0)
    monthly_limit: Mapped[float | None] = mapped_column(Float, nullable=True, default=0.0)
    failure_streak: Mapped[int] = mapped_column(Integer, default=0)
    paused_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class RoboUsageORM(Base):
    __tablename__ = "robo_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "bucket_type", "bucket_start", name="uq_robo_usage_bucket"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    bucket_type: Mapped[str] = mapped_column(String(8))
    bucket_start: Mapped[datetime] = mapped_column(DateTime)
    spent_notional: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class RoboLockORM(Base):
    __tablename__ = "robo_locks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    owner: Mapped[str] = mapped_column(String(128))
    locked_until: Mapped[datetime] = mapped_column(DateTime)


class RoboSignalExecutionORM(Base):
    __tablename__ = "robo_signal_executions"
    __table_args__ = (UniqueConstraint("user_id", "signal_id", name="uq_robo_signal_user_signal"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    signal_id: Mapped[str] = mapped_column(String(256))
    status: Mapped[str] = mapped_column(String(16), index=True)
    symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    side: Mapped[str | None] = mapped_column(String(8), nullable=True)
    qty: Mapped[float | None] = mapped_column(Float, nullable=True)
    strategy_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    strategy_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notional: Mapped[float | None] = mapped_column(Float, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
