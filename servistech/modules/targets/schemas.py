from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime
from servistech.modules.targets.models import ExpenseCategory, CashRegisterStatus


class FixedExpenseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    amount: Decimal = Field(..., gt=0, description="Monto mensual en USD")
    category: ExpenseCategory = ExpenseCategory.OTHER
    is_recurring: bool = True
    day_of_month: Optional[int] = Field(None, ge=1, le=31)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('El nombre no puede estar vacío')
        return v.strip()


class FixedExpenseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    amount: Optional[Decimal] = Field(None, gt=0)
    category: Optional[ExpenseCategory] = None
    is_recurring: Optional[bool] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    is_active: Optional[bool] = None


class FixedExpenseOut(BaseModel):
    id: UUID
    store_id: UUID
    name: str
    amount: Decimal
    category: ExpenseCategory
    is_recurring: bool
    day_of_month: Optional[int] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FixedExpenseList(BaseModel):
    expenses: List[FixedExpenseOut]
    total_monthly: Decimal
    daily_average: Decimal


class CashRegisterOpen(BaseModel):
    opening_balance_usd: Decimal = Field(Decimal('0'), ge=0)
    opening_balance_local: Decimal = Field(Decimal('0'), ge=0)


class CashRegisterOut(BaseModel):
    id: UUID
    store_id: UUID
    status: CashRegisterStatus
    opening_balance_usd: Decimal
    opening_balance_local: Decimal
    opened_by: Optional[UUID] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PettyCashExpenseCreate(BaseModel):
    description: str = Field(..., min_length=3, max_length=1000)
    amount: Decimal = Field(..., gt=0)
    category: ExpenseCategory = ExpenseCategory.OTHER
    receipt_photos: List[str] = Field(default_factory=list, description="Comprobantes (URLs o claves)")


class PettyCashExpenseOut(BaseModel):
    id: UUID
    register_id: UUID
    store_id: UUID
    description: str
    amount: Decimal
    category: ExpenseCategory
    receipt_photos: List[str]
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DailyTargetOut(BaseModel):
    id: UUID
    date: date
    store_id: UUID
    fixed_expenses_allocated: Decimal
    discretionary_spend: Decimal
    desired_margin: Decimal
    target_amount: Decimal
    net_target: Decimal
    actual_amount: Decimal
    is_met: bool

    class Config:
        from_attributes = True


class TargetDashboard(BaseModel):
    store_id: UUID
    days: int
    targets: List[DailyTargetOut]
    total_target: Decimal
    total_actual: Decimal
    days_met: int
    completion_rate: Decimal  # % de días con meta cumplida
    average_target: Decimal
    average_actual: Decimal
