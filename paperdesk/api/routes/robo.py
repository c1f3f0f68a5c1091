from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paperdesk.api.deps import get_db, get_robo, http_error
from paperdesk.errors import PaperDeskError
from paperdesk.models import User
from paperdesk.robo.engine import (
    RoboSignal,
    RoboTraderEngine,
    get_audit_events,
    get_robo_settings,
    get_usage_snapshot,
    settings_payload,
    update_robo_settings,
)
from paperdesk.robo.scheduler import get_robo_scheduler_service

router = APIRouter(prefix="/api/robo", tags=["robo"])


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    email: str | None = None


class RoboSettingsUpdateRequest(BaseModel):
    enabled: bool | None = None
    daily_limit: float | None = None
    weekly_limit: float | None = None
    monthly_limit: float | None = None


class RoboSignalRequest(BaseModel):
    symbol: str
    side: str = "buy"
    qty: float = 1
    strategy_id: str | None = None
    strategy_name: str | None = None
    stop_price: float | None = None
    signal_id: str | None = None
    generated_at: str | None = None


def _user_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/users")
def create_user(payload: UserCreateRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    user = User(username=payload.username.strip(), email=payload.email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Username already exists")
    db.refresh(user)
    return {"id": user.id, "username": user.username, "email": user.email}


@router.get("/users/{user_id}/settings")
def get_settings_for_user(user_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    _user_or_404(db, user_id)
    row = get_robo_settings(db, user_id)
    return {"settings": settings_payload(row), "usage": get_usage_snapshot(db, user_id)}


@router.put("/users/{user_id}/settings")
def update_settings_for_user(
    user_id: str,
    payload: RoboSettingsUpdateRequest,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    _user_or_404(db, user_id)
    row = update_robo_settings(db, user_id, payload.model_dump(exclude_unset=True))
    return {"settings": settings_payload(row), "usage": get_usage_snapshot(db, user_id)}


@router.get("/users/{user_id}/audit")
def get_audit_for_user(
    user_id: str,
    start: datetime | None = Query(default=None, alias="from"),
    end: datetime | None = Query(default=None, alias="to"),
    limit: int = 100,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    _user_or_404(db, user_id)
    rows = get_audit_events(db, user_id, start=start, end=end, limit=limit)
    return {
        "events": [
            {
                "id": row.id,
                "event_type": row.event_type,
                "payload": row.payload_json,
                "entity_id": row.entity_id,
                "created_at": row.created_at.isoformat(),
            }
            for row in rows
        ]
    }


@router.post("/users/{user_id}/run")
async def run_for_user(
    user_id: str,
    signal: RoboSignalRequest | None = None,
    db: Session = Depends(get_db),
    engine: RoboTraderEngine = Depends(get_robo),
) -> dict[str, Any]:
    _user_or_404(db, user_id)
    try:
        result = await engine.run_for_user(
            db,
            user_id,
            signal=RoboSignal(**signal.model_dump()) if signal is not None else None,
        )
    except PaperDeskError as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.get("/scheduler/status")
def scheduler_status() -> dict[str, Any]:
    return get_robo_scheduler_service().status_snapshot()
