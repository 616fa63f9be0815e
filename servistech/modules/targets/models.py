from servistech.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, Numeric, Enum, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from servistech.common.mixins import StoreMixin, TimestampMixin
import enum


class ExpenseCategory(str, enum.Enum):
    RENT = "RENT"
    UTILITIES = "UTILITIES"
    PAYROLL = "PAYROLL"
    INTERNET = "INTERNET"
    SUPPLIES = "SUPPLIES"
    TRANSPORT = "TRANSPORT"
    FOOD = "FOOD"
    MAINTENANCE = "MAINTENANCE"
    OTHER = "OTHER"


class CashRegisterStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class FixedExpense(Base, StoreMixin, TimestampMixin):
    """Gasto fijo mensual de la sede (alquiler, servicios, nómina base...)."""
    __tablename__ = "fixed_expenses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # USD por mes
    category = Column(Enum(ExpenseCategory), nullable=False, default=ExpenseCategory.OTHER)
    is_recurring = Column(Boolean, nullable=False, default=True)
    day_of_month = Column(Integer, nullable=True)  # Día de vencimiento
    is_active = Column(Boolean, nullable=False, default=True)


class CashRegister(Base, StoreMixin, TimestampMixin):
    __tablename__ = "cash_registers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    status = Column(Enum(CashRegisterStatus), nullable=False, default=CashRegisterStatus.OPEN)
    opening_balance_usd = Column(Numeric(15, 2), nullable=False, default=0)
    opening_balance_local = Column(Numeric(15, 2), nullable=False, default=0)
    opened_by = Column(UUID(as_uuid=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    expenses = relationship("PettyCashExpense", back_populates="register", cascade="all, delete-orphan")


class PettyCashExpense(Base, StoreMixin, TimestampMixin):
    """Gasto de caja chica; siempre con al menos un comprobante."""
    __tablename__ = "petty_cash_expenses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    category = Column(Enum(ExpenseCategory), nullable=False, default=ExpenseCategory.OTHER)
    receipt_photos = Column(JSON, nullable=False)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    register = relationship("CashRegister", back_populates="expenses")


class DailyTarget(Base, StoreMixin, TimestampMixin):
    """Meta diaria de ventas (punto de equilibrio más margen)."""
    __tablename__ = "daily_targets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    date = Column(Date, nullable=False)
    fixed_expenses_allocated = Column(Numeric(15, 2), nullable=False, default=0)
    discretionary_spend = Column(Numeric(15, 2), nullable=False, default=0)
    desired_margin = Column(Numeric(5, 4), nullable=False)
    target_amount = Column(Numeric(15, 2), nullable=False, default=0)
    net_target = Column(Numeric(15, 2), nullable=False, default=0)
    actual_amount = Column(Numeric(15, 2), nullable=False, default=0)
    is_met = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("date", "store_id", name="uq_daily_target_date_store"),
    )
