from pydantic import BaseModel
from typing import Optional, List, Any, Dict
from uuid import UUID
from datetime import datetime
from servistech.modules.audit.models import AuditAction


class AuditLogOut(BaseModel):
    id: UUID
    action: AuditAction
    entity_type: str
    entity_id: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    user_id: Optional[UUID] = None
    store_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogList(BaseModel):
    logs: List[AuditLogOut]
    total: int
    limit: int
    offset: int
