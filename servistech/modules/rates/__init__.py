"""
Módulo de Tasas de Cambio

Gestiona la tasa USD -> VES usada por todo el núcleo financiero:
- Tasa oficial (scraping del BCV) y paralela (precio USDT de Binance)
- Histórico append-only con procedencia (automática, manual, respaldo)
- Caché en memoria con TTL de 1 hora, invalidado tras cada sincronización
- Sincronización diaria por Celery beat y carga manual por SUPER_ADMIN

Si la fuente falla, la última tasa conocida se marca como respaldo y se
sigue usando; la lectura de la tasa vigente nunca devuelve None.
"""

from .models import ExchangeRate, RateKind, RateProvenance
from .cache import RateCache
from .store import RateStore
from .service import RateService, RateSynchronizer
from .converter import CurrencyConverter

__all__ = [
    "ExchangeRate",
    "RateKind",
    "RateProvenance",
    "RateCache",
    "RateStore",
    "RateService",
    "RateSynchronizer",
    "CurrencyConverter",
]
