from __future__ import annotations

import logging
from typing import Generator

from fastapi import HTTPException

from paperdesk.adapters.quotes import QuoteService, get_quote_service
from paperdesk.errors import (
    ConcurrencyConflictError,
    DataUnavailableError,
    DuplicatePlanError,
    GuardrailBlockedError,
    InvalidIdeaTransition,
    LimitPriceError,
    MarketClosedError,
    NotFoundError,
    OrderValidationError,
    PaperDeskError,
    PlanBlockedError,
)
from paperdesk.paper_trading.service import PaperBroker, get_paper_broker
from paperdesk.robo.engine import RoboTraderEngine, get_robo_engine
from paperdesk.shared.db import SessionLocal
from paperdesk.signals.recommendations import SignalProvider
from paperdesk.signals.regime import RegimeDetector
from paperdesk.trade_plan.engine import TradePlanService

logger = logging.getLogger(__name__)

_plan_service: TradePlanService | None = None

_STATUS_BY_ERROR: tuple[tuple[type[PaperDeskError], int], ...] = (
    (NotFoundError, 404),
    (DuplicatePlanError, 409),
    (InvalidIdeaTransition, 409),
    (ConcurrencyConflictError, 409),
    (DataUnavailableError, 503),
    (OrderValidationError, 400),
    (MarketClosedError, 400),
    (LimitPriceError, 400),
    (GuardrailBlockedError, 400),
    (PlanBlockedError, 400),
)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_quotes() -> QuoteService:
    return get_quote_service()


def get_broker() -> PaperBroker:
    return get_paper_broker()


def get_plan_service() -> TradePlanService:
    global _plan_service
    if _plan_service is None:
        quotes = get_quote_service()
        _plan_service = TradePlanService(SignalProvider(quotes), RegimeDetector(quotes))
    return _plan_service


def get_robo() -> RoboTraderEngine:
    return get_robo_engine()


def http_error(exc: PaperDeskError) -> HTTPException:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    logger.error("event=unmapped_error type=%s error=%s", type(exc).__name__, exc)
    return HTTPException(status_code=500, detail=str(exc))
