from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID
from datetime import date, datetime
from servistech.modules.invoices.models import InvoiceStatus, InvoiceItemType, PaymentMethod
from servistech.modules.rates.models import RateKind


# Invoice Line Item Schemas
class InvoiceLineItemCreate(BaseModel):
    kind: InvoiceItemType
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0, description="Cantidad debe ser mayor a 0")
    unit_price: Decimal = Field(..., ge=0, description="Precio unitario en USD")

    @field_validator('unit_price')
    @classmethod
    def validate_unit_price(cls, v):
        if v < 0:
            raise ValueError('El precio unitario no puede ser negativo')
        return v


class InvoiceLineItemOut(BaseModel):
    id: UUID
    kind: InvoiceItemType
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


# Payment Schemas
class PaymentCreate(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Monto en USD")
    reference: Optional[str] = Field(None, max_length=100)
    bank_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=120)


class PaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    method: PaymentMethod
    amount: Decimal
    amount_local: Optional[Decimal] = None
    reference: Optional[str] = None
    bank_name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    customer_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    items: List[InvoiceLineItemCreate] = Field(..., min_length=1, description="Debe incluir al menos un item")
    discount: Decimal = Field(Decimal('0'), description="Descuento en USD")
    rate_kind: Optional[RateKind] = Field(None, description="Tasa a usar; por defecto la configurada")
    payments: List[PaymentCreate] = Field(default_factory=list, description="Pagos al momento de emitir")
    notes: Optional[str] = None

    @field_validator('discount')
    @classmethod
    def validate_discount(cls, v):
        if v < 0:
            raise ValueError('El descuento no puede ser negativo')
        return v


class InvoiceQuoteRequest(BaseModel):
    items: List[InvoiceLineItemCreate] = Field(..., min_length=1)
    discount: Decimal = Decimal('0')
    payments: List[PaymentCreate] = Field(default_factory=list)
    rate_kind: Optional[RateKind] = None


class InvoiceTotalsOut(BaseModel):
    subtotal: Decimal
    surcharge_applied: bool
    surcharge_amount: Decimal
    discount: Decimal
    discount_clamped: bool
    total_usd: Decimal
    rate: Decimal
    rate_kind: RateKind
    rate_is_backup: bool = False
    total_local: Decimal
    paid_total: Decimal
    balance_due: Decimal
    status: InvoiceStatus


class InvoiceCancelRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class InvoiceOut(BaseModel):
    id: UUID
    number: str
    store_id: UUID
    customer_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    status: InvoiceStatus
    subtotal: Decimal
    surcharge_amount: Decimal
    discount: Decimal
    discount_clamped: bool
    total_usd: Decimal
    rate_kind: RateKind
    rate_applied: Decimal
    total_local: Decimal
    paid_total: Decimal
    balance_due: Decimal
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    line_items: List[InvoiceLineItemOut] = []
    payments: List[PaymentOut] = []


class InvoiceList(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int


class DailySalesReport(BaseModel):
    date: date
    store_id: UUID
    invoice_count: int
    total_sales: Decimal
    total_paid: Decimal
    surcharge_collected: Decimal
    payment_methods: Dict[str, Decimal]
