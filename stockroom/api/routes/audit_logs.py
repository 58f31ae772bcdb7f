from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockroom.api.deps import require_permission
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.user import User
from stockroom.schemas.audit import AuditLogOut, AuditLogPage
from stockroom.services.audit import list_audit_logs

router = APIRouter(prefix="/audit-logs", tags=["Audit Logs"])


@router.get("", response_model=AuditLogPage)
def get_audit_logs(
    user_id: int | None = None,
    action: AuditAction | None = None,
    entity_type: str | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: User = Depends(require_permission("audit:read")),
    db: Session = Depends(get_db),
):
    rows, total = list_audit_logs(
        db,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        search=search,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogPage(
        items=[AuditLogOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
