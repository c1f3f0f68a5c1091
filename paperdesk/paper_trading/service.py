from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from paperdesk.config.settings import get_settings
from paperdesk.errors import (
    ConcurrencyConflictError,
    GuardrailBlockedError,
    LimitPriceError,
    MarketClosedError,
    OrderValidationError,
    QuoteUnavailableError,
)
from paperdesk.models import (
    MarketSession,
    OrderSide,
    OrderType,
    PaperEquityORM,
    PaperGuardrailEventORM,
    PaperOrderORM,
    PaperSettingsORM,
    PaperTradeORM,
)
from paperdesk.paper_trading import accounts
from paperdesk.paper_trading.accounts import AccountSnapshot
from paperdesk.paper_trading.ledger import LedgerFill, Position, apply_trade, build_positions
from paperdesk.risk_engine.guardrails import evaluate_guardrails, update_cooldown_state
from paperdesk.shared.market_calendar import is_market_open
from paperdesk.signals.regime import RegimeDetector, ensure_regime_snapshot
from paperdesk.signals.strategies import get_strategy
from paperdesk.trade_plan.engine import get_plan_date, link_trade_to_plan

logger = logging.getLogger(__name__)

MAX_QTY_DECIMALS = 6
MAX_ORDER_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class OrderRequest:
    symbol: str
    side: str
    qty: Any
    order_type: str = OrderType.MARKET.value
    limit_price: Any = None
    max_price_per_share: Any = None
    allow_extended_hours: bool = True
    strategy_id: str | None = None
    setup_type: str | None = None
    strategy_tags: list[str] | None = None
    stop_price: Any = None


@dataclass(frozen=True)
class NormalizedOrder:
    symbol: str
    side: str
    qty: float
    order_type: str
    limit_price: float | None
    max_price_per_share: float | None
    allow_extended_hours: bool
    strategy_id: str | None
    setup_type: str | None
    strategy_tags: tuple[str, ...]
    stop_price: float | None

    @property
    def signed_qty(self) -> float:
        return self.qty if self.side == OrderSide.BUY.value else -self.qty


@dataclass
class OrderResult:
    order: PaperOrderORM
    trade: PaperTradeORM
    account: AccountSnapshot
    trade_plan_id: str | None = None
    warnings: list[str] = field(default_factory=list)


def _positive_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise OrderValidationError(f"{field_name} must be a positive number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise OrderValidationError(f"{field_name} must be a positive number.") from None
    if not math.isfinite(number) or number <= 0:
        raise OrderValidationError(f"{field_name} must be a positive number.")
    return number


def _decimal_places(value: Any) -> int:
    try:
        exponent = Decimal(str(value)).normalize().as_tuple().exponent
    except InvalidOperation:
        return 0
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def normalize_order(request: OrderRequest) -> NormalizedOrder:
    """Validate raw order fields. Raises OrderValidationError before any side effect."""
    symbol = str(request.symbol or "").strip().upper()
    if not symbol:
        raise OrderValidationError("Symbol is required.")

    side = str(request.side or "").strip().lower()
    if side not in {s.value for s in OrderSide}:
        raise OrderValidationError("side must be buy or sell.")

    qty = _positive_number(request.qty, "qty")
    if _decimal_places(request.qty) > MAX_QTY_DECIMALS:
        raise OrderValidationError(f"qty supports at most {MAX_QTY_DECIMALS} decimal places.")

    order_type = str(request.order_type or OrderType.MARKET.value).strip().lower()
    if order_type not in {t.value for t in OrderType}:
        raise OrderValidationError("order_type must be market or limit.")

    limit_price = None
    if order_type == OrderType.LIMIT.value:
        if request.limit_price is None:
            raise OrderValidationError("limit_price is required for limit orders.")
        limit_price = _positive_number(request.limit_price, "limit_price")

    max_price = None
    if request.max_price_per_share is not None:
        if side != OrderSide.BUY.value:
            raise OrderValidationError("max_price_per_share is only valid for buy orders.")
        max_price = _positive_number(request.max_price_per_share, "max_price_per_share")

    stop_price = _positive_number(request.stop_price, "stop_price") if request.stop_price is not None else None

    strategy_id = (request.strategy_id or "").strip() or None
    tags = [str(t) for t in (request.strategy_tags or []) if str(t).strip()]
    if not tags and strategy_id:
        strategy = get_strategy(strategy_id)
        tags = list(strategy.tags) if strategy else []

    return NormalizedOrder(
        symbol=symbol,
        side=side,
        qty=qty,
        order_type=order_type,
        limit_price=limit_price,
        max_price_per_share=max_price,
        allow_extended_hours=bool(request.allow_extended_hours),
        strategy_id=strategy_id,
        setup_type=(request.setup_type or "").strip() or None,
        strategy_tags=tuple(tags),
        stop_price=stop_price,
    )


def round_to_tick(price: float) -> float:
    """Half-up rounding to $0.01, or $0.0001 for sub-dollar prices."""
    tick = Decimal("0.01") if price >= 1 else Decimal("0.0001")
    return float(Decimal(str(price)).quantize(tick, rounding=ROUND_HALF_UP))


def compute_fill_price(quote_price: float, side: str, slippage_bps: float) -> float:
    factor = (slippage_bps or 0.0) / 10_000
    raw = quote_price * (1 + factor) if side == OrderSide.BUY.value else quote_price * (1 - factor)
    return round_to_tick(raw)


def check_price_limits(order: NormalizedOrder, fill_price: float) -> None:
    if order.order_type == OrderType.LIMIT.value and order.limit_price is not None:
        if order.side == OrderSide.BUY.value and fill_price > order.limit_price:
            raise LimitPriceError("Limit price too low for fill.")
        if order.side == OrderSide.SELL.value and fill_price < order.limit_price:
            raise LimitPriceError("Limit price too high for fill.")
    if order.max_price_per_share is not None and fill_price > order.max_price_per_share:
        raise LimitPriceError(
            f"Fill price {fill_price:.4f} exceeds max price per share {order.max_price_per_share:.4f}."
        )


def resolve_market_session(now: datetime, allow_extended_hours: bool) -> MarketSession:
    if is_market_open("NYSE", now):
        return MarketSession.REGULAR
    if not allow_extended_hours:
        raise MarketClosedError("Market is closed and extended-hours trading is not allowed for this order.")
    return MarketSession.EXTENDED


class PaperBroker:
    """Synthetic-fill broker over the paper ledger."""

    def __init__(self, quote_service: Any, regime_detector: RegimeDetector, account_id: str | None = None) -> None:
        self.quotes = quote_service
        self.regimes = regime_detector
        self.account_id = account_id or get_settings().account_id

    def get_settings(self, db: Session) -> PaperSettingsORM:
        return accounts.get_or_create_settings(db, self.account_id)

    def update_settings(self, db: Session, updates: dict[str, Any]) -> PaperSettingsORM:
        return accounts.update_settings(db, self.account_id, updates)

    def get_trades(self, db: Session) -> list[PaperTradeORM]:
        return list(reversed(accounts.list_trades(db, self.account_id)))

    def get_orders(self, db: Session) -> list[PaperOrderORM]:
        return accounts.list_orders(db, self.account_id)

    def get_equity_curve(self, db: Session) -> list[PaperEquityORM]:
        return accounts.equity_curve(db, self.account_id)

    async def get_positions(self, db: Session):
        return await accounts.get_positions(accounts.list_trades(db, self.account_id), self.quotes)

    async def get_account(self, db: Session, now: datetime | None = None) -> AccountSnapshot:
        return await accounts.get_account(db, self.account_id, self.quotes, now)

    async def place_order(self, db: Session, request: OrderRequest, now: datetime | None = None) -> OrderResult:
        order = normalize_order(request)
        for attempt in range(1, MAX_ORDER_ATTEMPTS + 1):
            try:
                return await self._execute(db, order, now or _utcnow())
            except StaleDataError:
                db.rollback()
                logger.warning(
                    "event=paper_order_conflict account=%s symbol=%s attempt=%s",
                    self.account_id,
                    order.symbol,
                    attempt,
                )
        raise ConcurrencyConflictError("Account risk state changed concurrently; order was not placed.")

    async def _execute(self, db: Session, order: NormalizedOrder, now: datetime) -> OrderResult:
        settings = accounts.get_or_create_settings(db, self.account_id)

        quote = await self.quotes.get_quote(order.symbol)
        if quote is None or not quote.price:
            raise QuoteUnavailableError(order.symbol)

        session = resolve_market_session(now, order.allow_extended_hours)
        fill_price = compute_fill_price(quote.price, order.side, settings.slippage_bps)
        check_price_limits(order, fill_price)

        account = await accounts.get_account(db, self.account_id, self.quotes, now)
        equity_base = account.equity if account.equity > 0 else settings.starting_cash
        notional = fill_price * order.qty
        guardrail = evaluate_guardrails(equity_base, notional, account.daily_pnl, settings, now)
        if not guardrail.ok:
            db.add(
                PaperGuardrailEventORM(
                    account_id=self.account_id,
                    symbol=order.symbol,
                    order_notional=notional,
                    reason=guardrail.reason or "",
                    created_at=now,
                )
            )
            db.commit()
            logger.info("event=paper_guardrail_block account=%s symbol=%s reason=%s", self.account_id, order.symbol, guardrail.reason)
            raise GuardrailBlockedError(guardrail)

        book = build_positions(accounts.list_trades(db, self.account_id))
        current = book.positions.get(order.symbol) or Position(symbol=order.symbol)
        _, realized = apply_trade(current, LedgerFill(order.symbol, order.side, order.qty, fill_price))
        is_closing = current.qty != 0 and current.qty * order.signed_qty < 0
        commission = float(settings.commission or 0.0)
        trade_realized = realized - commission
        risk_per_share = abs(fill_price - order.stop_price) if order.stop_price else None
        r_multiple = trade_realized / (risk_per_share * order.qty) if is_closing and risk_per_share else None

        regime = await ensure_regime_snapshot(db, self.regimes, get_plan_date(now), allow_prior=True)

        order_row = PaperOrderORM(
            account_id=self.account_id,
            symbol=order.symbol,
            side=order.side,
            qty=order.qty,
            order_type=order.order_type,
            limit_price=order.limit_price,
            max_price_per_share=order.max_price_per_share,
            allow_extended_hours=order.allow_extended_hours,
            market_session=session.value,
            strategy_id=order.strategy_id,
            setup_type=order.setup_type,
            strategy_tags=list(order.strategy_tags),
            stop_price=order.stop_price,
            status="filled",
            fill_price=fill_price,
            commission=commission,
            slippage_bps=float(settings.slippage_bps or 0.0),
            notional=notional,
            filled_at=now,
        )
        db.add(order_row)
        db.flush()

        trade_row = PaperTradeORM(
            account_id=self.account_id,
            order_id=order_row.id,
            symbol=order.symbol,
            side=order.side,
            qty=order.qty,
            price=fill_price,
            market_session=session.value,
            strategy_id=order.strategy_id,
            setup_type=order.setup_type,
            strategy_tags=list(order.strategy_tags),
            stop_price=order.stop_price,
            risk_per_share=round(risk_per_share, 4) if risk_per_share else None,
            r_multiple=round(r_multiple, 2) if r_multiple is not None else None,
            regime_at_trade=regime.as_dict() if regime is not None else None,
            commission=commission,
            notional=notional,
            realized_pnl=trade_realized,
            filled_at=now,
        )
        db.add(trade_row)
        db.flush()

        plan_id = link_trade_to_plan(db, trade_row, self.account_id)

        risk = update_cooldown_state(settings, trade_realized, now)
        settings.consecutive_losses = risk.consecutive_losses
        settings.cooldown_until = risk.cooldown_until
        # always touch the row so the version check runs even when the counters are unchanged
        settings.updated_at = now
        db.flush()

        after = await accounts.get_account(db, self.account_id, self.quotes, now)
        db.add(
            PaperEquityORM(
                account_id=self.account_id,
                timestamp=now,
                equity=after.equity,
                cash=after.cash,
                positions_value=after.positions_value,
                daily_pnl=after.daily_pnl,
                total_pnl=after.total_pnl,
            )
        )
        db.commit()
        db.refresh(order_row)
        db.refresh(trade_row)
        logger.info(
            "event=paper_order_filled account=%s symbol=%s side=%s qty=%s price=%s session=%s plan=%s",
            self.account_id,
            order.symbol,
            order.side,
            order.qty,
            fill_price,
            session.value,
            plan_id,
        )
        return OrderResult(order=order_row, trade=trade_row, account=after, trade_plan_id=plan_id)


_broker: PaperBroker | None = None


def get_paper_broker() -> PaperBroker:
    global _broker
    if _broker is None:
        from paperdesk.adapters.quotes import get_quote_service

        quotes = get_quote_service()
        _broker = PaperBroker(quotes, RegimeDetector(quotes))
    return _broker
