from servistech.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from decimal import Decimal
from servistech.common.mixins import StoreMixin, TimestampMixin
from servistech.modules.rates.models import RateKind
import enum


class InvoiceStatus(str, enum.Enum):
    PENDING = "PENDING"      # Sin pagos
    PARTIAL = "PARTIAL"      # Con pagos, saldo pendiente
    PAID = "PAID"            # Pagada completamente
    CANCELLED = "CANCELLED"  # Cancelada (terminal)


class InvoiceItemType(str, enum.Enum):
    SERVICE = "service"      # Mano de obra
    PART = "part"            # Repuesto
    ACCESSORY = "accessory"  # Accesorio (comisiona a la encargada)


class PaymentMethod(str, enum.Enum):
    ZELLE = "ZELLE"
    CASH_USD = "CASH_USD"       # Efectivo en divisas (genera IGTF)
    CASH_VES = "CASH_VES"       # Efectivo en bolívares
    PAGO_MOVIL = "PAGO_MOVIL"
    BINANCE = "BINANCE"
    TRANSFER = "TRANSFER"


FOREIGN_CASH_METHODS = {PaymentMethod.CASH_USD}
LOCAL_CURRENCY_METHODS = {PaymentMethod.CASH_VES, PaymentMethod.PAGO_MOVIL}


class Invoice(Base, StoreMixin, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String(20), nullable=False)  # F-2024-0001

    # Referencias a colaboradores externos
    customer_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    order_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    created_by = Column(UUID(as_uuid=True), nullable=False)

    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.PENDING)
    notes = Column(Text, nullable=True)

    # Totales en USD
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    surcharge_amount = Column(Numeric(15, 2), nullable=False, default=0)  # IGTF 3%
    discount = Column(Numeric(15, 2), nullable=False, default=0)
    discount_clamped = Column(Boolean, nullable=False, default=False)
    total_usd = Column(Numeric(15, 2), nullable=False, default=0)
    paid_total = Column(Numeric(15, 2), nullable=False, default=0)

    # Equivalente en VES con la tasa fijada al emitir
    rate_kind = Column(Enum(RateKind), nullable=False, default=RateKind.OFFICIAL)
    rate_applied = Column(Numeric(18, 6), nullable=False)
    total_local = Column(Numeric(18, 2), nullable=False, default=0)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    line_items = relationship("InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan")
    payments = relationship(
        "Payment", back_populates="invoice", cascade="all, delete-orphan", order_by="Payment.created_at"
    )

    __table_args__ = (
        UniqueConstraint("number", name="uq_invoice_number"),
    )

    @property
    def balance_due(self) -> Decimal:
        """Calcular saldo pendiente"""
        return Decimal(self.total_usd or 0) - Decimal(self.paid_total or 0)


class InvoiceLineItem(Base, TimestampMixin):
    __tablename__ = "invoice_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)

    kind = Column(Enum(InvoiceItemType), nullable=False)
    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price

    invoice = relationship("Invoice", back_populates="line_items")


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)

    method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # USD
    amount_local = Column(Numeric(18, 2), nullable=True)  # VES para pagos en bolívares
    reference = Column(String(100), nullable=True)
    bank_name = Column(String(100), nullable=True)
    phone_number = Column(String(30), nullable=True)
    email = Column(String(120), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    invoice = relationship("Invoice", back_populates="payments")
