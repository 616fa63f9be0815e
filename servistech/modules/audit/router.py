from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from servistech.database.database import get_db
from servistech.modules.auth.dependencies import AuthDependencies
from servistech.modules.auth.schemas import AuthContext
from servistech.modules.audit.models import AuditAction
from servistech.modules.audit.schemas import AuditLogList
from servistech.modules.audit.service import AuditService

audit_router = APIRouter(prefix="/audit", tags=["Audit"])


@audit_router.get("/", response_model=AuditLogList)
def list_audit_logs(
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[str] = Query(None, description="rate, invoice, commission, debit"),
    entity_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["SUPER_ADMIN", "GERENTE"]))
):
    """Bitácora de cambios financieros (tasas manuales, pagos, contra-cargos)."""
    return AuditService(db).list_events(action, entity_type, entity_id, since, limit, offset)
