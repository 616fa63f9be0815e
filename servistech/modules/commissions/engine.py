"""
Motor de comisiones y contra-cargos.

- Técnico (TECNICO): porcentaje sobre la utilidad bruta de la orden; sin
  utilidad conocida no hay comisión
- Encargada (ENCARGADA): monto fijo por equipo + porcentaje sobre accesorios,
  sin importar la utilidad
- Contra-cargos: se descuentan del neto; si lo dejarían negativo, el neto
  queda en 0, la comisión pasa a DEBITADA y se marca para revisión
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
from uuid import UUID

from servistech.common.exceptions import BusinessRuleViolation
from servistech.modules.auth.schemas import UserRole
from servistech.modules.commissions.models import (
    Commission, CommissionDebit, CommissionStatus, DebitReason, EVIDENCE_REQUIRED_REASONS
)
from servistech.modules.commissions.schemas import OrderSnapshot
from servistech.modules.invoices.models import InvoiceItemType

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


class CommissionEngine:

    def compute_for_order(self, order: OrderSnapshot, now: Optional[datetime] = None) -> Optional[Commission]:
        """
        Calcular la comisión de una orden completada.

        Args:
            order: datos de la orden, su técnico y su factura
            now: momento del cálculo; define el período (mes/año)

        Returns:
            Commission sin persistir, o None si la orden no genera comisión
        """
        technician = order.technician
        if technician is None:
            logger.info(f"Order {order.id} has no technician, no commission")
            return None

        gross_profit = Decimal(order.gross_profit) if order.gross_profit is not None else ZERO
        flat_rate_amount = ZERO

        if technician.role == UserRole.TECNICO.value:
            # El esquema del técnico depende de la utilidad; la encargada no
            if order.gross_profit is None:
                logger.info(f"Order {order.id} has no gross profit, no technician commission")
                return None
            rate = Decimal(technician.commission_rate)
            commission_amount = max(gross_profit, ZERO) * rate / HUNDRED
        elif technician.role == UserRole.ENCARGADA.value:
            rate = Decimal(technician.accessory_rate)
            accessory_total = sum(
                (Decimal(item.total) for item in (order.invoice.items if order.invoice else [])
                 if item.type == InvoiceItemType.ACCESSORY),
                ZERO
            )
            flat_rate_amount = Decimal(technician.flat_rate_per_unit)
            commission_amount = accessory_total * rate / HUNDRED
        else:
            logger.info(f"Order {order.id}: role {technician.role} has no commission scheme")
            return None

        now = now or datetime.now(timezone.utc)
        commission_amount = _money(commission_amount)
        flat_rate_amount = _money(flat_rate_amount)

        return Commission(
            order_id=order.id,
            technician_id=technician.id,
            technician_role=technician.role,
            technician_name=technician.name,
            store_id=order.store_id,
            gross_profit=_money(gross_profit),
            commission_rate=rate,
            commission_amount=commission_amount,
            flat_rate_amount=flat_rate_amount,
            debits_total=ZERO,
            net_amount=commission_amount + flat_rate_amount,
            period_month=now.month,
            period_year=now.year,
            status=CommissionStatus.PENDIENTE,
            needs_review=False
        )

    @staticmethod
    def recalculate(commission: Commission) -> Decimal:
        """
        Recalcular débitos y neto. Devuelve el neto sin recortar.
        """
        debits_total = sum(
            (Decimal(d.amount) for d in commission.debits if not d.is_reversed), ZERO
        )
        raw_net = (
            Decimal(commission.commission_amount or 0)
            + Decimal(commission.flat_rate_amount or 0)
            - debits_total
        )
        commission.debits_total = _money(debits_total)
        commission.net_amount = _money(max(raw_net, ZERO))
        return raw_net

    def apply_debit(
        self,
        commission: Commission,
        reason: DebitReason,
        amount: Decimal,
        approved_by: Optional[UUID] = None,
        description: Optional[str] = None,
        photos: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> CommissionDebit:
        """
        Aplicar un contra-cargo.

        El estado solo cambia (a DEBITADA, aunque ya esté PAGADA) cuando el
        contra-cargo dejaría el neto negativo.

        Raises:
            BusinessRuleViolation: si el monto no es mayor a 0
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise BusinessRuleViolation(
                "El monto del contra-cargo debe ser mayor a 0",
                constraint="debit_positive",
                details={"amount": amount}
            )

        evidence_required = reason in EVIDENCE_REQUIRED_REASONS
        if evidence_required and not photos:
            logger.warning(f"Debit {reason.value} on commission {commission.id} registered without evidence photos")

        debit = CommissionDebit(
            technician_id=commission.technician_id,
            reason=reason,
            description=description,
            amount=_money(amount),
            evidence_required=evidence_required,
            photos=photos or [],
            approved_by=approved_by,
            approved_at=now or datetime.now(timezone.utc)
        )
        commission.debits.append(debit)

        raw_net = self.recalculate(commission)
        if raw_net < 0:
            logger.warning(
                f"Commission {commission.id} net would be {raw_net}, clamped to 0 and flagged for review "
                f"(was {commission.status.value})"
            )
            commission.needs_review = True
            commission.status = CommissionStatus.DEBITADA

        return debit

    def reverse_debit(
        self,
        commission: Commission,
        debit: CommissionDebit,
        reversed_by: UUID,
        note: str,
        now: Optional[datetime] = None
    ) -> CommissionDebit:
        """
        Revertir un contra-cargo sin borrarlo.

        Si la comisión estaba DEBITADA y el neto vuelve a ser no negativo,
        regresa a PAGADA (si ya se había pagado) o a PENDIENTE.
        """
        if debit.is_reversed:
            raise BusinessRuleViolation(
                "El contra-cargo ya fue revertido",
                constraint="debit_not_reversed",
                details={"debit_id": str(debit.id)}
            )

        debit.reversed_at = now or datetime.now(timezone.utc)
        debit.reversed_by = reversed_by
        debit.reversal_note = note

        raw_net = self.recalculate(commission)
        if raw_net >= 0:
            commission.needs_review = False
            if commission.status == CommissionStatus.DEBITADA:
                commission.status = CommissionStatus.PAGADA if commission.paid_at else CommissionStatus.PENDIENTE
        return debit

    @staticmethod
    def batch_pay(commissions: Iterable[Commission], paid_by: UUID, now: Optional[datetime] = None) -> int:
        """
        Marcar como PAGADA cada comisión PENDIENTE; las demás se omiten.

        Returns:
            Cantidad de comisiones pagadas
        """
        paid_at = now or datetime.now(timezone.utc)
        count = 0
        for commission in commissions:
            if commission.status != CommissionStatus.PENDIENTE:
                continue
            commission.status = CommissionStatus.PAGADA
            commission.paid_at = paid_at
            commission.paid_by = paid_by
            count += 1
        return count
