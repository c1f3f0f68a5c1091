from paperdesk.models.core import (
    AuditLogORM,
    BucketType,
    ExecutionAuditLogORM,
    MarketSession,
    OrderSide,
    OrderType,
    PaperEquityORM,
    PaperGuardrailEventORM,
    PaperOrderORM,
    PaperSettingsORM,
    PaperTradeORM,
    PlanLogStatus,
    RegimeSnapshotORM,
    RoboLockORM,
    RoboSettingsORM,
    RoboSignalExecutionORM,
    RoboUsageORM,
    SignalExecutionStatus,
    TradeIdeaORM,
    TradePlanLogORM,
    TradePlanORM,
)
from paperdesk.models.user import User

__all__ = [
    "AuditLogORM",
    "BucketType",
    "ExecutionAuditLogORM",
    "MarketSession",
    "OrderSide",
    "OrderType",
    "PaperEquityORM",
    "PaperGuardrailEventORM",
    "PaperOrderORM",
    "PaperSettingsORM",
    "PaperTradeORM",
    "PlanLogStatus",
    "RegimeSnapshotORM",
    "RoboLockORM",
    "RoboSettingsORM",
    "RoboSignalExecutionORM",
    "RoboUsageORM",
    "SignalExecutionStatus",
    "TradeIdeaORM",
    "TradePlanLogORM",
    "TradePlanORM",
    "User",
]
