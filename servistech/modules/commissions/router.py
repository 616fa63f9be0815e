from fastapi import APIRouter, Depends, Query, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from servistech.database.database import get_db
from servistech.modules.audit.sink import AuditSink, get_audit_sink
from servistech.modules.auth.dependencies import AuthDependencies, get_optional_store_scope
from servistech.modules.auth.schemas import AuthContext
from servistech.modules.commissions.models import CommissionStatus
from servistech.modules.commissions.service import CommissionService
from servistech.modules.commissions.schemas import (
    CommissionList, CommissionSummary, CommissionComputeResult, CommissionDebitOut, CommissionOut,
    OrderSnapshot, DebitCreate, DebitReverseRequest, DebitResult,
    BatchPayRequest, BatchPayResult, PayrollReport
)

commissions_router = APIRouter(prefix="/commissions", tags=["Commissions"])

MANAGER_ROLES = ["SUPER_ADMIN", "GERENTE"]
DEBIT_ROLES = ["SUPER_ADMIN", "GERENTE", "QA"]
COMPUTE_ROLES = ["SUPER_ADMIN", "GERENTE", "ENCARGADA", "QA"]
SELF_SERVICE_ROLES = ["TECNICO", "ENCARGADA"]


def get_commission_service(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink)
) -> CommissionService:
    return CommissionService(db, audit=audit)


def _check_own_data(auth_context: AuthContext, technician_id: UUID):
    if auth_context.user_role in MANAGER_ROLES:
        return
    if auth_context.user_role in SELF_SERVICE_ROLES and auth_context.user_id == technician_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Solo puedes consultar tus propias comisiones"
    )


@commissions_router.get("/", response_model=CommissionList)
def list_commissions(
    technician_id: Optional[UUID] = Query(None),
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    period_month: Optional[int] = Query(None, ge=1, le=12),
    period_year: Optional[int] = Query(None, ge=2000),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: CommissionService = Depends(get_commission_service),
    store_id: Optional[UUID] = Depends(get_optional_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES + SELF_SERVICE_ROLES))
):
    """
    Listar comisiones.

    Técnicos y encargadas solo ven las propias; gerencia ve las de su sede.
    """
    if auth_context.user_role in SELF_SERVICE_ROLES:
        technician_id = auth_context.user_id
    return service.get_commissions(
        store_id=store_id,
        technician_id=technician_id,
        status_filter=status_filter,
        period_month=period_month,
        period_year=period_year,
        limit=limit,
        offset=offset
    )


@commissions_router.get("/summary/{technician_id}", response_model=CommissionSummary)
def commission_summary(
    technician_id: UUID,
    period_month: Optional[int] = Query(None, ge=1, le=12),
    period_year: Optional[int] = Query(None, ge=2000),
    service: CommissionService = Depends(get_commission_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES + SELF_SERVICE_ROLES))
):
    _check_own_data(auth_context, technician_id)
    return service.get_summary(technician_id, period_month, period_year)


@commissions_router.get("/payroll-report", response_model=PayrollReport)
def payroll_report(
    period_month: Optional[int] = Query(None, ge=1, le=12),
    period_year: Optional[int] = Query(None, ge=2000),
    service: CommissionService = Depends(get_commission_service),
    store_id: Optional[UUID] = Depends(get_optional_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Nómina de comisiones del período, agrupada por técnico."""
    return service.get_payroll_report(period_month, period_year, store_id)


@commissions_router.post("/compute", response_model=CommissionComputeResult)
def compute_commission(
    order: OrderSnapshot,
    service: CommissionService = Depends(get_commission_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(COMPUTE_ROLES))
):
    """
    Calcular la comisión de una orden completada.

    Nunca responde con error por el cálculo: `created=false` y `reason`
    explican por qué no se generó.
    """
    return service.compute_for_order(order)


@commissions_router.post("/pay", response_model=BatchPayResult)
def pay_commissions(
    pay_data: BatchPayRequest,
    service: CommissionService = Depends(get_commission_service),
    store_id: Optional[UUID] = Depends(get_optional_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    count = service.batch_pay(pay_data.commission_ids, auth_context.user_id, store_id)
    return BatchPayResult(message=f"{count} comisiones pagadas", count=count)


@commissions_router.post("/debits", response_model=DebitResult, status_code=status.HTTP_201_CREATED)
def create_debit(
    debit_data: DebitCreate,
    service: CommissionService = Depends(get_commission_service),
    store_id: Optional[UUID] = Depends(get_optional_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(DEBIT_ROLES))
):
    """
    Aplicar un contra-cargo a una comisión.

    Si el neto quedaría negativo se deja en 0, la comisión pasa a DEBITADA
    y queda marcada para revisión.
    """
    debit, commission = service.apply_debit(debit_data, auth_context.user_id, store_id)
    return DebitResult(
        debit=CommissionDebitOut.model_validate(debit),
        commission=CommissionOut.model_validate(commission)
    )


@commissions_router.get("/debits/{technician_id}", response_model=List[CommissionDebitOut])
def technician_debits(
    technician_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: CommissionService = Depends(get_commission_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(DEBIT_ROLES + SELF_SERVICE_ROLES))
):
    if auth_context.user_role != "QA":
        _check_own_data(auth_context, technician_id)
    return service.get_debits_by_technician(technician_id, limit, offset)


@commissions_router.post("/debits/{debit_id}/reverse", response_model=DebitResult)
def reverse_debit(
    debit_id: UUID,
    reverse_data: DebitReverseRequest,
    service: CommissionService = Depends(get_commission_service),
    store_id: Optional[UUID] = Depends(get_optional_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    debit, commission = service.reverse_debit(debit_id, reverse_data.note, auth_context.user_id, store_id)
    return DebitResult(
        debit=CommissionDebitOut.model_validate(debit),
        commission=CommissionOut.model_validate(commission)
    )
