"""Append-only audit trail.

Audit rows are observability, not correctness: :func:`record_audit` is called
after the primary write has been committed and swallows its own failures so
a broken audit table can never undo or fail a business operation.
"""

import json
import logging
from datetime import datetime
from typing import Any

from fastapi import Request
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from stockroom.models.audit import AuditAction, AuditLog
from stockroom.models.user import User

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def request_context(request: Request | None) -> dict[str, str | None]:
    if request is None:
        return {"ip_address": None, "user_agent": None}
    return {"ip_address": get_client_ip(request), "user_agent": request.headers.get("user-agent")}


def _jsonable(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    if metadata is None:
        return None
    return json.loads(json.dumps(metadata, default=str))


def track_changes(instance: Any, updates: dict[str, Any], redact: tuple[str, ...] = ()) -> dict[str, dict[str, Any]]:
    """Map each updated field whose value differs to ``{"old": ..., "new": ...}``."""
    changes: dict[str, dict[str, Any]] = {}
    for field, new_value in updates.items():
        old_value = getattr(instance, field, None)
        if new_value == old_value:
            continue
        if field in redact:
            changes[field] = {"old": "[REDACTED]", "new": "[REDACTED]"}
        else:
            changes[field] = {"old": old_value, "new": new_value}
    return changes


def describe_changes(changes: dict[str, dict[str, Any]]) -> str:
    return ", ".join(f"{field}: {value['old']} -> {value['new']}" for field, value in changes.items())


def record_audit(
    db: Session,
    action: AuditAction,
    entity_type: str,
    *,
    entity_id: int | str | None = None,
    user_id: int | None = None,
    details: str | None = None,
    metadata: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog | None:
    try:
        audit = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details,
            extra=_jsonable(metadata),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(audit)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to write audit log (%s %s %s)", action.value, entity_type, entity_id)
        return None
    return audit


def list_audit_logs(
    db: Session,
    *,
    user_id: int | None = None,
    action: AuditAction | None = None,
    entity_type: str | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    query = select(AuditLog).outerjoin(User, User.id == AuditLog.user_id)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if action is not None:
        query = query.where(AuditLog.action == action)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if start_date is not None:
        query = query.where(AuditLog.created_at >= start_date)
    if end_date is not None:
        query = query.where(AuditLog.created_at <= end_date)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        query = query.where(
            or_(
                func.lower(AuditLog.details).like(pattern),
                func.lower(AuditLog.entity_type).like(pattern),
                func.lower(User.name).like(pattern),
                func.lower(User.email).like(pattern),
            )
        )

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(
        query.options(selectinload(AuditLog.user))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    return list(rows), total
