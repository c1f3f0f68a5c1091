from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from paperdesk.models import AuditLogORM

logger = logging.getLogger(__name__)

MAX_AUDIT_LIMIT = 500


def log_audit(
    db: Session,
    subject_id: str | None,
    event_type: str,
    payload: dict[str, Any] | None = None,
    entity_type: str = "robo",
    entity_id: str | None = None,
    commit: bool = True,
) -> AuditLogORM:
    """Append one audit row. Rows are never updated or deleted by the application."""
    row = AuditLogORM(
        subject_id=subject_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        payload_json=payload or {},
        created_at=datetime.utcnow(),
    )
    db.add(row)
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info("event=audit type=%s subject=%s entity=%s", event_type, subject_id, entity_type)
    return row


def clamp_limit(limit: int | None, default: int = 100) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), MAX_AUDIT_LIMIT))


def query_audit(
    db: Session,
    subject_id: str | None = None,
    entity_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[AuditLogORM]:
    query = db.query(AuditLogORM)
    if subject_id is not None:
        query = query.filter(AuditLogORM.subject_id == subject_id)
    if entity_type is not None:
        query = query.filter(AuditLogORM.entity_type == entity_type)
    if start is not None:
        query = query.filter(AuditLogORM.created_at >= start)
    if end is not None:
        query = query.filter(AuditLogORM.created_at <= end)
    return query.order_by(AuditLogORM.created_at.desc()).limit(clamp_limit(limit)).all()
