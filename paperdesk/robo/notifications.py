"""Trade notifications for the robo trader: email text, providers and bounded retry."""
from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Awaitable, Callable
from uuid import uuid4

from paperdesk.config.settings import AppSettings, get_settings
from paperdesk.errors import PaperDeskError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 0.25


class NotificationError(PaperDeskError):
    pass


@dataclass(frozen=True)
class NotificationReceipt:
    provider: str
    message_id: str | None


@dataclass
class DeliveryResult:
    ok: bool
    attempts: int
    receipt: NotificationReceipt | None = None
    error: str | None = None


def _money(value: Any) -> str:
    try:
        return f"${float(value or 0):.2f}"
    except (TypeError, ValueError):
        return "$0.00"


def format_trade_subject(details: dict[str, Any]) -> str:
    return f"Robo Trader {str(details.get('side') or '').upper()} {details.get('symbol') or ''}".strip()


def format_trade_email(details: dict[str, Any]) -> str:
    lines = [
        "Robo Trader Order Notification",
        "",
        f"Symbol: {details.get('symbol')}",
        f"Side: {str(details.get('side') or '').upper()}",
        f"Qty: {details.get('qty')}",
        f"Notional: {_money(details.get('notional'))}",
        f"Estimated Price: {_money(details.get('estimated_price'))}",
        f"Timestamp: {details.get('timestamp')}",
        f"Strategy: {details.get('strategy_name') or 'N/A'}",
        f"Order ID: {details.get('order_id')}",
        "",
        "Disclaimer: Values are estimates and execution details may differ.",
    ]
    return "\n".join(lines)


class Notifier:
    """Sends trade emails through the configured provider (``log`` or ``smtp``)."""

    def __init__(self, settings: AppSettings | None = None) -> None:
        self.settings = settings or get_settings()

    @property
    def provider(self) -> str:
        return (self.settings.notification_provider or "log").lower()

    async def send(self, to: str | None, details: dict[str, Any]) -> NotificationReceipt:
        if not to:
            raise NotificationError("Recipient email is required for Robo Trader notifications.")
        subject = format_trade_subject(details)
        body = format_trade_email(details)
        if self.provider == "log":
            logger.info('event=robo_email provider=log to=%s subject="%s"', to, subject)
            return NotificationReceipt(provider="log", message_id=f"log-{uuid4().hex}")
        if self.provider == "smtp":
            message_id = await asyncio.to_thread(self._send_smtp, to, subject, body)
            return NotificationReceipt(provider="smtp", message_id=message_id)
        raise NotificationError(f'Unsupported Robo email provider "{self.provider}".')

    def _send_smtp(self, to: str, subject: str, body: str) -> str:
        cfg = self.settings
        if not cfg.smtp_host:
            raise NotificationError("Missing SMTP host for SMTP email provider.")
        sender = cfg.smtp_from or cfg.smtp_user
        if not sender:
            raise NotificationError("Missing SMTP sender address.")

        message = EmailMessage()
        message["From"] = sender
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = f"<{uuid4().hex}@paperdesk>"
        message.set_content(body)

        if cfg.smtp_port == 465:
            client: smtplib.SMTP = smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=10)
        else:
            client = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10)
        with client:
            if cfg.smtp_port != 465:
                client.starttls()
            if cfg.smtp_user and cfg.smtp_password:
                client.login(cfg.smtp_user, cfg.smtp_password)
            client.send_message(message)
        return str(message["Message-ID"])


async def send_with_retry(
    notifier: Any,
    to: str | None,
    details: dict[str, Any],
    attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> DeliveryResult:
    """Up to ``attempts`` sends with linear backoff (0.25s x attempt). Never raises."""
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            receipt = await notifier.send(to, details)
            return DeliveryResult(ok=True, attempts=attempt, receipt=receipt)
        except Exception as exc:
            last_error = exc
            logger.warning("event=robo_email_attempt_failed attempt=%s to=%s error=%s", attempt, to, exc)
            if attempt < attempts:
                await sleep(BACKOFF_SECONDS * attempt)
    return DeliveryResult(
        ok=False,
        attempts=attempts,
        error=str(last_error) if last_error else "Unknown email error",
    )
