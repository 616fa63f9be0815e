from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum
from servistech.modules.rates.models import RateKind, RateProvenance


class ConversionDirection(str, Enum):
    TO_LOCAL = "to_local"  # USD -> VES
    TO_USD = "to_usd"      # VES -> USD


class RateQuote(BaseModel):
    """Tasa vigente con su procedencia, para mostrar si está desactualizada."""
    rate_kind: RateKind
    value: Decimal
    provenance: Optional[RateProvenance] = None
    observed_at: Optional[datetime] = None
    is_backup: bool = False
    is_default: bool = False


class ExchangeRateOut(BaseModel):
    id: int
    rate_kind: RateKind
    value: Decimal
    provenance: RateProvenance
    observed_at: datetime
    source_price: Optional[Decimal] = None
    source: Optional[str] = None
    updated_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class RateHistory(BaseModel):
    rate_kind: RateKind
    rates: List[ExchangeRateOut]
    total: int


class ManualRateUpdate(BaseModel):
    value: Decimal = Field(..., gt=0, description="VES por 1 USD")

    @field_validator('value')
    @classmethod
    def validate_value(cls, v):
        if not v.is_finite() or v <= 0:
            raise ValueError('La tasa debe ser un número mayor a 0')
        return v


class RateSyncResult(BaseModel):
    rate_kind: RateKind
    success: bool
    observation: Optional[ExchangeRateOut] = None
    failure_reason: Optional[str] = None
    backup_marked: bool = False

    class Config:
        from_attributes = True


class ConversionRequest(BaseModel):
    amount: Decimal = Field(..., ge=0)
    direction: ConversionDirection = ConversionDirection.TO_LOCAL
    rate_kind: RateKind = RateKind.OFFICIAL


class ConversionResult(BaseModel):
    amount: Decimal
    converted: Decimal
    direction: ConversionDirection
    rate: Decimal
    rate_kind: RateKind
    is_backup: bool = False
