"""
Módulo de Comisiones

Comisiones calculadas al completar una orden:
- TECNICO: porcentaje (35% por defecto) sobre la utilidad bruta
- ENCARGADA: $1 por equipo más 10% sobre los accesorios vendidos
- Contra-cargos con evidencia, reversibles, que nunca dejan el neto negativo
- Pago en lote y reporte de nómina por período
"""

from .models import Commission, CommissionDebit, CommissionStatus, DebitReason
from .engine import CommissionEngine
from .service import CommissionService

__all__ = [
    "Commission",
    "CommissionDebit",
    "CommissionStatus",
    "DebitReason",
    "CommissionEngine",
    "CommissionService",
]
