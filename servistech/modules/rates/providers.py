"""
Proveedores externos de tasa USD -> VES.

- BCVRateProvider: scraping de la página del Banco Central de Venezuela.
- BinanceRateProvider: estimación paralela a partir del precio USDT.

Ambos lanzan RateSourceError ante cualquier fallo (timeout, HTTP, parseo o
valor no positivo); nunca devuelven un valor inválido.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx
from bs4 import BeautifulSoup

from servistech.core.config import settings
from servistech.common.exceptions import RateSourceError
from servistech.modules.rates.models import RateKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedRate:
    value: Decimal
    source: str
    source_price: Optional[Decimal] = None


def parse_localized_number(text: str) -> Decimal:
    """
    Convertir un número en formato local ("1.234,56") a Decimal.

    Raises:
        RateSourceError: si el texto no es un número finito mayor a 0
    """
    normalized = text.strip().replace('.', '').replace(',', '.')
    try:
        value = Decimal(normalized)
    except InvalidOperation:
        raise RateSourceError(f"Valor de tasa no numérico: {text!r}")
    return ensure_positive(value)


def ensure_positive(value: Decimal) -> Decimal:
    if not value.is_finite() or value <= 0:
        raise RateSourceError(f"Valor de tasa inválido: {value}")
    return value


class RateProvider(ABC):
    """Fuente externa de una tasa de cambio."""

    rate_kind: RateKind
    source_name: str

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout if timeout is not None else settings.RATE_FETCH_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self, **kwargs) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport, **kwargs)

    def fetch(self) -> FetchedRate:
        try:
            return self._fetch()
        except httpx.TimeoutException as e:
            raise RateSourceError(f"{self.source_name}: timeout después de {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RateSourceError(f"{self.source_name}: error HTTP {e}") from e

    @abstractmethod
    def _fetch(self) -> FetchedRate:
        raise NotImplementedError


class BCVRateProvider(RateProvider):
    """Tasa oficial publicada en la página del BCV (elemento `#dolar strong`)."""

    rate_kind = RateKind.OFFICIAL
    source_name = "BCV"
    SELECTOR = "#dolar strong"

    def __init__(self, url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.url = url or settings.BCV_URL

    def _fetch(self) -> FetchedRate:
        with self._client(verify=settings.BCV_VERIFY_SSL, follow_redirects=True) as client:
            response = client.get(self.url, headers={"User-Agent": "Mozilla/5.0 (SERVISTECH rate sync)"})
            response.raise_for_status()

        soup = BeautifulSoup(response.text, "html.parser")
        element = soup.select_one(self.SELECTOR)
        if element is None:
            raise RateSourceError(f"BCV: no se encontró el elemento '{self.SELECTOR}'")

        value = parse_localized_number(element.get_text())
        logger.info(f"BCV rate scraped: {value}")
        return FetchedRate(value=value, source=self.source_name)


class BinanceRateProvider(RateProvider):
    """
    Tasa paralela estimada: tasa oficial x diferencial x precio USDT.

    La tasa oficial se obtiene con `official_rate`, normalmente
    RateService.get_current(RateKind.OFFICIAL).
    """

    rate_kind = RateKind.PARALLEL
    source_name = "BINANCE"

    def __init__(
        self,
        official_rate: Callable[[], Decimal],
        url: Optional[str] = None,
        symbol: Optional[str] = None,
        differential: Optional[Decimal] = None,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.official_rate = official_rate
        self.url = url or settings.BINANCE_API_URL
        self.symbol = symbol or settings.BINANCE_SYMBOL
        self.differential = Decimal(str(differential if differential is not None else settings.PARALLEL_DIFFERENTIAL))

    def _fetch(self) -> FetchedRate:
        with self._client() as client:
            response = client.get(self.url, params={"symbol": self.symbol})
            response.raise_for_status()

        try:
            usdt_price = Decimal(str(response.json()["price"]))
        except (ValueError, KeyError, TypeError, InvalidOperation):
            raise RateSourceError("BINANCE: respuesta sin precio válido")
        usdt_price = ensure_positive(usdt_price)

        official = ensure_positive(Decimal(str(self.official_rate())))
        value = ensure_positive(official * self.differential * usdt_price)
        logger.info(f"Parallel rate estimated: {value} (official={official}, usdt={usdt_price})")
        return FetchedRate(value=value, source=self.source_name, source_price=usdt_price)
