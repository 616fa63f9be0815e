"""
Cálculo de la meta diaria de ventas.

    asignado_fijo = gastos_fijos_mensuales / 30
    meta          = (asignado_fijo + gasto_discrecional) / (1 - margen_deseado)
    meta_neta     = meta - asignado_fijo - gasto_discrecional
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from servistech.core.config import settings
from servistech.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')
ZERO = Decimal('0')


@dataclass(frozen=True)
class TargetFigures:
    fixed_expenses_allocated: Decimal
    discretionary_spend: Decimal
    desired_margin: Decimal
    target_amount: Decimal
    net_target: Decimal
    actual_amount: Decimal
    is_met: bool


class TargetCalculator:

    def __init__(self, desired_margin: Optional[Decimal] = None, days_per_month: Optional[int] = None):
        margin = settings.TARGET_DESIRED_MARGIN if desired_margin is None else desired_margin
        self.desired_margin = Decimal(str(margin))
        self.days_per_month = days_per_month or settings.FIXED_EXPENSE_DAYS_PER_MONTH
        if self.desired_margin >= 1 or self.desired_margin < 0:
            raise ConfigurationError(
                "El margen deseado debe estar entre 0 y 1 (sin incluir 1)",
                details={"desired_margin": self.desired_margin}
            )
        if self.days_per_month <= 0:
            raise ConfigurationError(
                "Los días por mes deben ser mayores a 0",
                details={"days_per_month": self.days_per_month}
            )

    def allocate_fixed(self, fixed_amounts: Iterable[Decimal]) -> Decimal:
        total = sum((Decimal(a) for a in fixed_amounts), ZERO)
        return total / Decimal(self.days_per_month)

    def calculate(
        self,
        fixed_amounts: Iterable[Decimal],
        discretionary_spend: Decimal,
        actual_amount: Decimal
    ) -> TargetFigures:
        """
        Calcular la meta del día.

        Los montos intermedios no se redondean; solo el resultado.
        """
        fixed = self.allocate_fixed(fixed_amounts)
        discretionary = Decimal(discretionary_spend)
        base = fixed + discretionary
        target = base / (1 - self.desired_margin)
        actual = Decimal(actual_amount)

        target_amount = target.quantize(MONEY, rounding=ROUND_HALF_UP)
        return TargetFigures(
            fixed_expenses_allocated=fixed.quantize(MONEY, rounding=ROUND_HALF_UP),
            discretionary_spend=discretionary.quantize(MONEY, rounding=ROUND_HALF_UP),
            desired_margin=self.desired_margin,
            target_amount=target_amount,
            net_target=(target - base).quantize(MONEY, rounding=ROUND_HALF_UP),
            actual_amount=actual.quantize(MONEY, rounding=ROUND_HALF_UP),
            is_met=actual >= target_amount
        )
