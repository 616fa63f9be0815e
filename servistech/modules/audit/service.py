from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from servistech.modules.audit.models import AuditLog, AuditAction


class AuditService:

    def __init__(self, db: Session):
        self.db = db

    def save_event(self, event: Dict[str, Any]) -> AuditLog:
        """Persistir un evento ya serializado por el sink."""
        log = AuditLog(
            action=AuditAction(event["action"]),
            entity_type=event["entity_type"],
            entity_id=event["entity_id"],
            old_value=event.get("old_value"),
            new_value=event.get("new_value"),
            user_id=UUID(event["user_id"]) if event.get("user_id") else None,
            store_id=UUID(event["store_id"]) if event.get("store_id") else None,
        )
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        return log

    def list_events(
        self,
        action: Optional[AuditAction] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        query = self.db.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(AuditLog.entity_id == entity_id)
        if since:
            query = query.filter(AuditLog.created_at >= since)

        total = query.count()
        logs: List[AuditLog] = query.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit).all()
        return {"logs": logs, "total": total, "limit": limit, "offset": offset}
