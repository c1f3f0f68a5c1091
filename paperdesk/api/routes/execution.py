from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from paperdesk.adapters.quotes import QuoteService
from paperdesk.api.deps import get_broker, get_db, get_quotes, http_error
from paperdesk.errors import PaperDeskError
from paperdesk.paper_trading.service import PaperBroker
from paperdesk.trade_plan.execution import check_idea_execution

router = APIRouter(prefix="/api/execution", tags=["execution"])


class ExecutionCheckRequest(BaseModel):
    plan_id: str = Field(min_length=1)
    idea_id: str = Field(min_length=1)


@router.post("/check")
async def check_execution(
    payload: ExecutionCheckRequest,
    db: Session = Depends(get_db),
    broker: PaperBroker = Depends(get_broker),
    quotes: QuoteService = Depends(get_quotes),
) -> dict[str, Any]:
    try:
        result = await check_idea_execution(db, broker.account_id, payload.plan_id, payload.idea_id, quotes)
    except PaperDeskError as exc:
        raise http_error(exc) from exc
    return result.to_dict()
