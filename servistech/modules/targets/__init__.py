"""
Módulo de Metas Diarias

Meta de venta diaria por sede a partir de sus gastos:
- Gastos fijos mensuales prorrateados en 30 días
- Gastos de caja chica del día (con comprobante, en caja abierta)
- Meta = (fijos + discrecionales) / (1 - margen deseado)
- Comparación contra las ventas del día (facturas PAID o PARTIAL)
"""

from .models import FixedExpense, CashRegister, PettyCashExpense, DailyTarget
from .calculator import TargetCalculator, TargetFigures
from .service import TargetService, SqlExpenseSource

__all__ = [
    "FixedExpense",
    "CashRegister",
    "PettyCashExpense",
    "DailyTarget",
    "TargetCalculator",
    "TargetFigures",
    "TargetService",
    "SqlExpenseSource",
]
