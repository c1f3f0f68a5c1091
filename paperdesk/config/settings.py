from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class AppSettings(BaseModel):
    app_name: str = "PaperDesk API"
    app_version: str = "0.1.0"
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )
    sqlite_url: str = "sqlite:///./paperdesk.db"
    account_id: str = "default"

    # paper account defaults, applied when an account's settings row is first created
    starting_cash: float = 100_000.0
    slippage_bps: float = 5.0
    commission: float = 0.0
    max_position_pct: float = 5.0
    max_daily_loss_pct: float = 2.0
    cooldown_hours: float = 4.0

    plan_window_days: int = 30
    plan_max_ideas: int = 5
    plan_max_exposure_pct: float = 20.0
    watchlist: list[str] = Field(
        default_factory=lambda: ["AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "SPY", "QQQ"]
    )

    robo_scheduler_disabled: bool = False
    robo_interval_seconds: int = 60
    robo_cleanup_interval_seconds: int = 6 * 60 * 60
    robo_lock_ttl_seconds: int = 30
    robo_signal_symbol: str = "AAPL"
    robo_signal_side: str = "buy"
    robo_signal_qty: int = 1
    robo_signal_retention_days: int = 90
    robo_circuit_failure_threshold: int = 3
    robo_circuit_cooldown_minutes: int = 60
    robo_fallback_email: str | None = None

    notification_provider: str = "log"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None

    finnhub_api_key: str | None = None
    quote_timeout_seconds: float = 8.0


def _parse_list_env(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    vals = [item.strip() for item in raw.split(",")]
    vals = [item for item in vals if item]
    return vals or None


def _env(name: str) -> str | None:
    return os.getenv(f"PAPERDESK_{name}")


def _flag(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    base = Path(__file__).resolve().parents[2]
    source = base / "config" / "settings.yaml"
    payload: dict[str, Any] = {}
    if source.exists():
        payload = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    if not isinstance(payload, dict):
        payload = {}
    app_cfg = payload.get("app", {}) or {}
    paper_cfg = payload.get("paper", {}) or {}
    plan_cfg = payload.get("trade_plan", {}) or {}
    robo_cfg = payload.get("robo", {}) or {}
    notify_cfg = payload.get("notifications", {}) or {}
    defaults = AppSettings()

    def pick(env_name: str, section: dict[str, Any], key: str, default: Any) -> Any:
        raw = _env(env_name)
        if raw is not None:
            return raw
        return section.get(key, default)

    return AppSettings(
        app_name=pick("APP_NAME", app_cfg, "name", defaults.app_name),
        app_version=pick("APP_VERSION", app_cfg, "version", defaults.app_version),
        cors_origins=_parse_list_env(_env("CORS_ORIGINS")) or app_cfg.get("cors_origins", defaults.cors_origins),
        sqlite_url=_env("SQLITE_URL") or payload.get("sqlite_url", defaults.sqlite_url),
        account_id=pick("ACCOUNT_ID", paper_cfg, "account_id", defaults.account_id),
        starting_cash=float(pick("STARTING_CASH", paper_cfg, "starting_cash", defaults.starting_cash)),
        slippage_bps=float(pick("SLIPPAGE_BPS", paper_cfg, "slippage_bps", defaults.slippage_bps)),
        commission=float(pick("COMMISSION", paper_cfg, "commission", defaults.commission)),
        max_position_pct=float(pick("MAX_POSITION_PCT", paper_cfg, "max_position_pct", defaults.max_position_pct)),
        max_daily_loss_pct=float(pick("MAX_DAILY_LOSS_PCT", paper_cfg, "max_daily_loss_pct", defaults.max_daily_loss_pct)),
        cooldown_hours=float(pick("COOLDOWN_HOURS", paper_cfg, "cooldown_hours", defaults.cooldown_hours)),
        plan_window_days=int(pick("PLAN_WINDOW_DAYS", plan_cfg, "window_days", defaults.plan_window_days)),
        plan_max_ideas=int(pick("PLAN_MAX_IDEAS", plan_cfg, "max_ideas", defaults.plan_max_ideas)),
        plan_max_exposure_pct=float(pick("PLAN_MAX_EXPOSURE_PCT", plan_cfg, "max_exposure_pct", defaults.plan_max_exposure_pct)),
        watchlist=_parse_list_env(_env("WATCHLIST")) or plan_cfg.get("watchlist", defaults.watchlist),
        robo_scheduler_disabled=_flag(_env("ROBO_SCHEDULER_DISABLED"), bool(robo_cfg.get("scheduler_disabled", False))),
        robo_interval_seconds=int(pick("ROBO_INTERVAL_SECONDS", robo_cfg, "interval_seconds", defaults.robo_interval_seconds)),
        robo_cleanup_interval_seconds=int(
            pick("ROBO_CLEANUP_INTERVAL_SECONDS", robo_cfg, "cleanup_interval_seconds", defaults.robo_cleanup_interval_seconds)
        ),
        robo_lock_ttl_seconds=int(pick("ROBO_LOCK_TTL_SECONDS", robo_cfg, "lock_ttl_seconds", defaults.robo_lock_ttl_seconds)),
        robo_signal_symbol=str(pick("ROBO_SIGNAL_SYMBOL", robo_cfg, "signal_symbol", defaults.robo_signal_symbol)).upper(),
        robo_signal_side=str(pick("ROBO_SIGNAL_SIDE", robo_cfg, "signal_side", defaults.robo_signal_side)).lower(),
        robo_signal_qty=int(pick("ROBO_SIGNAL_QTY", robo_cfg, "signal_qty", defaults.robo_signal_qty)),
        robo_signal_retention_days=int(
            pick("ROBO_SIGNAL_RETENTION_DAYS", robo_cfg, "signal_retention_days", defaults.robo_signal_retention_days)
        ),
        robo_circuit_failure_threshold=int(
            pick("ROBO_CIRCUIT_FAILURE_THRESHOLD", robo_cfg, "circuit_failure_threshold", defaults.robo_circuit_failure_threshold)
        ),
        robo_circuit_cooldown_minutes=int(
            pick("ROBO_CIRCUIT_COOLDOWN_MINUTES", robo_cfg, "circuit_cooldown_minutes", defaults.robo_circuit_cooldown_minutes)
        ),
        robo_fallback_email=pick("ROBO_FALLBACK_EMAIL", robo_cfg, "fallback_email", None),
        notification_provider=str(pick("NOTIFICATION_PROVIDER", notify_cfg, "provider", defaults.notification_provider)).lower(),
        smtp_host=pick("SMTP_HOST", notify_cfg, "smtp_host", None),
        smtp_port=int(pick("SMTP_PORT", notify_cfg, "smtp_port", defaults.smtp_port)),
        smtp_user=pick("SMTP_USER", notify_cfg, "smtp_user", None),
        smtp_password=pick("SMTP_PASSWORD", notify_cfg, "smtp_password", None),
        smtp_from=pick("SMTP_FROM", notify_cfg, "smtp_from", None),
        finnhub_api_key=_env("FINNHUB_API_KEY") or os.getenv("FINNHUB_API_KEY") or payload.get("finnhub_api_key"),
        quote_timeout_seconds=float(pick("QUOTE_TIMEOUT_SECONDS", payload, "quote_timeout_seconds", defaults.quote_timeout_seconds)),
    )
