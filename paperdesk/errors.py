from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paperdesk.risk_engine.guardrails import GuardrailResult


class PaperDeskError(Exception):
    """Base class for errors raised by the trading core."""


class OrderValidationError(PaperDeskError, ValueError):
    pass


class DataUnavailableError(PaperDeskError):
    """Required market data (quotes, bars) could not be retrieved."""


class QuoteUnavailableError(DataUnavailableError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"Quote unavailable for {symbol}.")
        self.symbol = symbol


class MarketClosedError(PaperDeskError):
    pass


class LimitPriceError(PaperDeskError):
    pass


class GuardrailBlockedError(PaperDeskError):
    def __init__(self, result: GuardrailResult) -> None:
        super().__init__(result.reason or "Order blocked by guardrails.")
        self.result = result


class ConcurrencyConflictError(PaperDeskError):
    pass


class DuplicatePlanError(PaperDeskError):
    def __init__(self, plan_id: str | None, date: str) -> None:
        super().__init__(f"Trade plan already exists for {date}.")
        self.plan_id = plan_id
        self.date = date


class PlanBlockedError(PaperDeskError):
    pass


class InvalidIdeaTransition(PaperDeskError):
    pass


class NotFoundError(PaperDeskError, LookupError):
    pass
