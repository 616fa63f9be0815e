"""
Conversión USD <-> VES con la tasa vigente.

Las funciones puras no redondean; el redondeo a 2 decimales se hace una sola
vez, al presentar el resultado.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from servistech.modules.rates.models import RateKind
from servistech.modules.rates.schemas import ConversionDirection, ConversionResult, RateQuote

MONEY_QUANTUM = Decimal('0.01')


def to_local(amount_usd: Decimal, rate: Decimal) -> Decimal:
    """USD -> VES"""
    return Decimal(amount_usd) * Decimal(rate)


def to_usd(amount_local: Decimal, rate: Decimal) -> Decimal:
    """VES -> USD"""
    rate = Decimal(rate)
    if rate <= 0:
        raise ValueError("La tasa debe ser mayor a 0")
    return Decimal(amount_local) / rate


class CurrencyConverter:
    """Convierte montos usando la tasa vigente de un tipo dado."""

    def __init__(self, quote_lookup: Callable[[RateKind], RateQuote]):
        self.quote_lookup = quote_lookup

    def to_local(self, amount_usd: Decimal, kind: RateKind = RateKind.OFFICIAL) -> Decimal:
        return to_local(amount_usd, self.quote_lookup(kind).value)

    def to_usd(self, amount_local: Decimal, kind: RateKind = RateKind.OFFICIAL) -> Decimal:
        return to_usd(amount_local, self.quote_lookup(kind).value)

    def convert(
        self,
        amount: Decimal,
        direction: ConversionDirection,
        kind: RateKind = RateKind.OFFICIAL,
        rate: Optional[Decimal] = None
    ) -> ConversionResult:
        quote = self.quote_lookup(kind)
        applied = Decimal(rate) if rate is not None else quote.value

        if direction == ConversionDirection.TO_LOCAL:
            converted = to_local(amount, applied)
        else:
            converted = to_usd(amount, applied)

        return ConversionResult(
            amount=amount,
            converted=converted.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP),
            direction=direction,
            rate=applied,
            rate_kind=kind,
            is_backup=quote.is_backup if rate is None else False
        )
