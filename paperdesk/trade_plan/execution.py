from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from paperdesk.models import ExecutionAuditLogORM
from paperdesk.paper_trading import accounts
from paperdesk.risk_engine.execution_gate import GateResult, evaluate_execution_gate
from paperdesk.trade_plan.engine import find_idea, get_plan_by_id

logger = logging.getLogger(__name__)


async def check_idea_execution(
    db: Session,
    account_id: str,
    plan_id: str,
    idea_id: str,
    quote_service: Any,
    now: datetime | None = None,
) -> GateResult:
    """Run the eligibility gate for one plan idea and record the verdict."""
    plan = get_plan_by_id(db, account_id, plan_id)
    idea = find_idea(plan, idea_id)
    trades = accounts.list_trades(db, account_id, strategy_id=idea.strategy_id)
    account = await accounts.get_account(db, account_id, quote_service, now)
    settings = accounts.get_or_create_settings(db, account_id)

    result = evaluate_execution_gate(idea, trades, account, settings)
    db.add(
        ExecutionAuditLogORM(
            account_id=account_id,
            plan_id=plan.id,
            idea_id=idea.id,
            strategy_id=idea.strategy_id,
            eligible=result.eligible,
            reasons_blocked=list(result.reasons_blocked),
            account_snapshot={
                "equity": account.equity,
                "positions_value": account.positions_value,
                "daily_pnl": account.daily_pnl,
                "daily_drawdown": result.account_stats.daily_drawdown,
                "exposure_pct": result.account_stats.exposure_pct,
                "consecutive_losses": result.account_stats.consecutive_losses,
            },
        )
    )
    db.commit()
    logger.info(
        "event=execution_check plan=%s idea=%s strategy=%s eligible=%s reasons=%s",
        plan.id,
        idea.id,
        idea.strategy_id,
        result.eligible,
        len(result.reasons_blocked),
    )
    return result
