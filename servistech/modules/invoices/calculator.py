"""
Cálculo de totales de factura en USD/VES.

Reglas:
- subtotal = suma de cantidad x precio unitario de cada línea
- IGTF (3%) sobre el subtotal cuando algún pago es efectivo en divisas
- total = subtotal + IGTF - descuento, nunca negativo
- total en bolívares = total x tasa fijada en la factura

El IGTF se calcula antes de validar el saldo de un pago nuevo: un primer
pago en efectivo USD puede cubrir el total con recargo.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol, Sequence

from servistech.core.config import settings
from servistech.common.exceptions import (
    BusinessRuleViolation, PaymentExceedsBalanceError, InvalidStatusTransitionError
)
from servistech.modules.invoices.models import InvoiceStatus, PaymentMethod, FOREIGN_CASH_METHODS

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')
ZERO = Decimal('0')


class LineLike(Protocol):
    quantity: Decimal
    unit_price: Decimal


class PaymentLike(Protocol):
    method: PaymentMethod
    amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    surcharge_applied: bool
    surcharge_amount: Decimal
    discount: Decimal
    discount_clamped: bool
    total_usd: Decimal
    rate: Decimal
    total_local: Decimal
    paid_total: Decimal
    balance_due: Decimal
    status: InvoiceStatus


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


class InvoiceCalculator:
    """Calculadora pura de totales, pagos y estados de factura."""

    def __init__(self, surcharge_rate: Optional[Decimal] = None):
        self.surcharge_rate = Decimal(str(
            surcharge_rate if surcharge_rate is not None else settings.FOREIGN_CASH_SURCHARGE_RATE
        ))

    @staticmethod
    def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
        return _money(Decimal(quantity) * Decimal(unit_price))

    def subtotal(self, lines: Iterable[LineLike]) -> Decimal:
        return sum((self.line_total(line.quantity, line.unit_price) for line in lines), ZERO)

    @staticmethod
    def requires_surcharge(payments: Iterable[PaymentLike]) -> bool:
        return any(PaymentMethod(p.method) in FOREIGN_CASH_METHODS for p in payments)

    @staticmethod
    def resolve_status(paid_total: Decimal, total_usd: Decimal, current: Optional[InvoiceStatus] = None) -> InvoiceStatus:
        """
        PAID exactamente cuando lo pagado cubre el total; un total de 0 (descuento
        que cubre todo) ya está pagado.
        """
        if current == InvoiceStatus.CANCELLED:
            return InvoiceStatus.CANCELLED
        if total_usd <= 0 or paid_total >= total_usd:
            return InvoiceStatus.PAID
        if paid_total <= 0:
            return InvoiceStatus.PENDING
        return InvoiceStatus.PARTIAL

    def compute_totals(
        self,
        lines: Sequence[LineLike],
        payments: Sequence[PaymentLike] = (),
        discount: Decimal = ZERO,
        rate: Decimal = Decimal('1'),
        status: Optional[InvoiceStatus] = None
    ) -> InvoiceTotals:
        """
        Calcular los totales de una factura.

        Args:
            lines: líneas de la factura
            payments: pagos registrados (determinan si aplica IGTF)
            discount: descuento en USD, no negativo
            rate: tasa VES por USD fijada en la factura
            status: estado actual, para conservar CANCELLED

        Returns:
            InvoiceTotals

        Raises:
            BusinessRuleViolation: si el descuento es negativo
        """
        discount = Decimal(discount or 0)
        if discount < 0:
            raise BusinessRuleViolation(
                f"El descuento no puede ser negativo: {discount}",
                constraint="discount_non_negative",
                details={"discount": discount}
            )

        subtotal = self.subtotal(lines)
        surcharge_applied = self.requires_surcharge(payments)
        surcharge = _money(subtotal * self.surcharge_rate) if surcharge_applied else ZERO

        total = subtotal + surcharge - discount
        discount_clamped = total < 0
        if discount_clamped:
            logger.warning(f"Discount {discount} exceeds subtotal+surcharge {subtotal + surcharge}, total clamped to 0")
            total = ZERO
        total = _money(total)

        paid_total = _money(sum((Decimal(p.amount) for p in payments), ZERO))
        rate = Decimal(rate)

        return InvoiceTotals(
            subtotal=_money(subtotal),
            surcharge_applied=surcharge_applied,
            surcharge_amount=surcharge,
            discount=_money(discount),
            discount_clamped=discount_clamped,
            total_usd=total,
            rate=rate,
            total_local=_money(total * rate),
            paid_total=paid_total,
            balance_due=max(total - paid_total, ZERO),
            status=self.resolve_status(paid_total, total, status)
        )

    def apply_payment(
        self,
        lines: Sequence[LineLike],
        payments: Sequence[PaymentLike],
        new_payment: PaymentLike,
        discount: Decimal = ZERO,
        rate: Decimal = Decimal('1'),
        status: InvoiceStatus = InvoiceStatus.PENDING
    ) -> InvoiceTotals:
        """
        Validar un pago nuevo y devolver los totales resultantes.

        El recargo que dispara el propio pago entra en el total antes de
        comparar contra el saldo.

        Raises:
            BusinessRuleViolation: factura pagada/cancelada o monto no positivo
            PaymentExceedsBalanceError: el monto supera el saldo pendiente
        """
        if status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise BusinessRuleViolation(
                f"La factura en estado {status.value} no admite pagos",
                constraint="invoice_accepts_payments",
                details={"status": status.value}
            )

        amount = Decimal(new_payment.amount)
        if amount <= 0:
            raise BusinessRuleViolation(
                "El monto del pago debe ser mayor a 0",
                constraint="payment_positive",
                details={"amount": amount}
            )

        prospective = self.compute_totals(lines, [*payments, new_payment], discount, rate, status)
        prior_paid = sum((Decimal(p.amount) for p in payments), ZERO)
        remaining = prospective.total_usd - prior_paid

        if amount > remaining:
            raise PaymentExceedsBalanceError(amount=amount, remaining=remaining)

        return prospective

    @staticmethod
    def cancel(current: InvoiceStatus) -> InvoiceStatus:
        if current == InvoiceStatus.PAID:
            raise InvalidStatusTransitionError(
                current.value, InvoiceStatus.CANCELLED.value,
                "No se pueden cancelar facturas que ya están pagadas"
            )
        if current == InvoiceStatus.CANCELLED:
            raise InvalidStatusTransitionError(
                current.value, InvoiceStatus.CANCELLED.value,
                "La factura ya está cancelada"
            )
        return InvoiceStatus.CANCELLED
