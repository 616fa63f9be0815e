from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from servistech.modules.commissions.models import CommissionStatus, DebitReason
from servistech.modules.invoices.models import InvoiceItemType


# Snapshot enviado por el servicio de órdenes al completar una orden
class TechnicianSnapshot(BaseModel):
    id: UUID
    role: str
    name: Optional[str] = None
    commission_rate: Decimal = Field(Decimal('35'), ge=0, le=100, description="% sobre utilidad bruta")
    flat_rate_per_unit: Decimal = Field(Decimal('1'), ge=0, description="USD por equipo (encargada)")
    accessory_rate: Decimal = Field(Decimal('10'), ge=0, le=100, description="% sobre accesorios (encargada)")


class OrderInvoiceItem(BaseModel):
    type: InvoiceItemType
    total: Decimal


class OrderInvoiceSnapshot(BaseModel):
    items: List[OrderInvoiceItem] = []


class OrderSnapshot(BaseModel):
    id: UUID
    store_id: Optional[UUID] = None
    gross_profit: Optional[Decimal] = None
    technician: Optional[TechnicianSnapshot] = None
    invoice: Optional[OrderInvoiceSnapshot] = None


class CommissionDebitOut(BaseModel):
    id: UUID
    commission_id: UUID
    technician_id: UUID
    reason: DebitReason
    description: Optional[str] = None
    amount: Decimal
    evidence_required: bool
    photos: Optional[List[str]] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[UUID] = None
    reversal_note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CommissionOut(BaseModel):
    id: UUID
    order_id: UUID
    technician_id: UUID
    technician_role: str
    technician_name: Optional[str] = None
    store_id: Optional[UUID] = None
    gross_profit: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    flat_rate_amount: Decimal
    debits_total: Decimal
    net_amount: Decimal
    period_month: int
    period_year: int
    status: CommissionStatus
    needs_review: bool
    paid_at: Optional[datetime] = None
    paid_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CommissionDetail(CommissionOut):
    debits: List[CommissionDebitOut] = []


class CommissionList(BaseModel):
    commissions: List[CommissionDetail]
    total: int
    limit: int
    offset: int


class CommissionComputeResult(BaseModel):
    created: bool
    commission: Optional[CommissionOut] = None
    reason: Optional[str] = None


class DebitCreate(BaseModel):
    commission_id: UUID
    reason: DebitReason
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(None, max_length=1000)
    photos: List[str] = Field(default_factory=list, description="URLs o claves de las fotos de evidencia")

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError('El monto del contra-cargo debe ser mayor a 0')
        return v


class DebitReverseRequest(BaseModel):
    note: str = Field(..., min_length=3, max_length=1000)


class DebitResult(BaseModel):
    debit: CommissionDebitOut
    commission: CommissionOut


class BatchPayRequest(BaseModel):
    commission_ids: List[UUID] = Field(..., min_length=1)


class BatchPayResult(BaseModel):
    message: str
    count: int


class StatusBreakdown(BaseModel):
    status: CommissionStatus
    count: int
    net_amount: Decimal


class CommissionSummary(BaseModel):
    technician_id: UUID
    total_commissions: int
    total_gross_profit: Decimal
    total_amount: Decimal
    total_flat_rate: Decimal
    total_debits: Decimal
    net_payable: Decimal
    by_status: List[StatusBreakdown]


class PayrollLine(BaseModel):
    technician_id: UUID
    technician_name: Optional[str] = None
    technician_role: str
    orders_completed: int
    commission_amount: Decimal
    flat_rate_amount: Decimal
    total_debits: Decimal
    net_payable: Decimal


class PayrollReport(BaseModel):
    period_month: int
    period_year: int
    data: List[PayrollLine]
    total_payable: Decimal
    total_orders: int
