from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import date, datetime, timezone

from servistech.database.database import get_db
from servistech.modules.audit.sink import AuditSink, get_audit_sink
from servistech.modules.auth.dependencies import AuthDependencies, get_store_scope
from servistech.modules.auth.schemas import AuthContext
from servistech.modules.invoices.models import InvoiceStatus
from servistech.modules.invoices.service import InvoiceService
from servistech.modules.invoices.schemas import (
    InvoiceCreate, InvoiceDetail, InvoiceList, PaymentCreate,
    InvoiceCancelRequest, InvoiceQuoteRequest, InvoiceTotalsOut, DailySalesReport
)
from servistech.modules.rates.dependencies import get_rate_service
from servistech.modules.rates.service import RateService

invoices_router = APIRouter(prefix="/invoices", tags=["Invoices"])

POS_ROLES = ["SUPER_ADMIN", "GERENTE", "ENCARGADA", "ANFITRION"]
REPORT_ROLES = ["SUPER_ADMIN", "GERENTE", "ENCARGADA"]


def get_invoice_service(
    db: Session = Depends(get_db),
    rate_service: RateService = Depends(get_rate_service),
    audit: AuditSink = Depends(get_audit_sink)
) -> InvoiceService:
    return InvoiceService(db, rate_service, audit=audit)


@invoices_router.post("/quote", response_model=InvoiceTotalsOut)
def quote_invoice(
    data: InvoiceQuoteRequest,
    service: InvoiceService = Depends(get_invoice_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Previsualizar totales (USD, IGTF y VES) sin crear la factura.
    """
    return service.quote(data)


@invoices_router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice_data: InvoiceCreate,
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Crear una factura con la tasa vigente.

    Si se incluyen pagos en efectivo USD se aplica el IGTF (3%) sobre el subtotal.
    """
    return service.create_invoice(invoice_data, store_id, auth_context.user_id)


@invoices_router.get("/", response_model=InvoiceList)
def list_invoices(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None, description="Fecha inicial (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="Fecha final (YYYY-MM-DD)"),
    search: Optional[str] = Query(None, description="Buscar por número de factura"),
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    return service.get_invoices(
        store_id=store_id,
        status_filter=status_filter,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=offset
    )


@invoices_router.get("/daily-report", response_model=DailySalesReport)
def daily_report(
    report_date: Optional[date] = Query(None, alias="date"),
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REPORT_ROLES))
):
    """Ventas del día por sede, con totales por método de pago."""
    return service.get_daily_report(store_id, report_date or datetime.now(timezone.utc).date())


@invoices_router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: UUID,
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    return service.get_invoice_by_id(invoice_id, store_id)


@invoices_router.post("/{invoice_id}/payments", response_model=InvoiceDetail)
def add_payment(
    invoice_id: UUID,
    payment_data: PaymentCreate,
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Registrar un pago.

    Rechaza montos que superen el saldo (incluyendo el IGTF que el propio
    pago dispare) y pagos sobre facturas pagadas o canceladas.
    """
    return service.add_payment(invoice_id, payment_data, store_id, auth_context.user_id)


@invoices_router.post("/{invoice_id}/cancel", response_model=InvoiceDetail)
def cancel_invoice(
    invoice_id: UUID,
    cancel_data: InvoiceCancelRequest,
    service: InvoiceService = Depends(get_invoice_service),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REPORT_ROLES))
):
    return service.cancel_invoice(invoice_id, cancel_data.reason, store_id, auth_context.user_id)
