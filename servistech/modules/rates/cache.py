import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from servistech.core.config import settings
from servistech.modules.rates.models import RateKind
from servistech.modules.rates.schemas import RateQuote


@dataclass
class CachedRate:
    rate_kind: RateKind
    quote: RateQuote
    cached_at: float


class RateCache:
    """
    Caché en memoria de la tasa vigente por tipo, con TTL.

    Una instancia por proceso (API o worker), creada al arrancar e inyectada
    donde se necesita. Dos lecturas que fallan el caché a la vez pueden
    poblarlo ambas; gana la última escritura.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.RATE_CACHE_TTL_SECONDS
        self._clock = clock
        self._entries: Dict[RateKind, CachedRate] = {}
        self._lock = threading.RLock()

    def get(self, kind: RateKind) -> Optional[RateQuote]:
        with self._lock:
            entry = self._entries.get(kind)
            if entry is None:
                return None
            if self._clock() - entry.cached_at >= self.ttl_seconds:
                del self._entries[kind]
                return None
            return entry.quote

    def set(self, kind: RateKind, quote: RateQuote) -> None:
        with self._lock:
            self._entries[kind] = CachedRate(rate_kind=kind, quote=quote, cached_at=self._clock())

    def invalidate(self, kind: RateKind) -> None:
        with self._lock:
            self._entries.pop(kind, None)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
