from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from stockroom.models.audit import AuditAction


class AuditUserOut(BaseModel):
    id: int
    name: str
    email: str

    model_config = {"from_attributes": True}


class AuditLogOut(BaseModel):
    id: int
    user_id: int | None
    user: AuditUserOut | None = None
    action: AuditAction
    entity_type: str
    entity_id: str | None
    details: str | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="extra")
    ip_address: str | None
    user_agent: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogPage(BaseModel):
    items: list[AuditLogOut]
    total: int
    limit: int
    offset: int
