"""Response models for audit log endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    model_config = {"from_attributes": True, "populate_by_name": True}

    id: str
    user_id: str
    username: str
    action: str
    resource_type: str
    resource_id: str
    old_value: Any = None
    new_value: Any = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="audit_metadata")
    timestamp: datetime


class AuditLogListResponse(BaseModel):
    entries: list[AuditLogResponse]
    total: int
