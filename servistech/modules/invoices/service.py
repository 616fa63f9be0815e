from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, and_
from fastapi import HTTPException, status
from typing import Optional, List, Dict, Tuple
from uuid import UUID
from decimal import Decimal
from datetime import date, datetime, time, timedelta, timezone
import logging

from servistech.core.config import settings
from servistech.common.exceptions import (
    BusinessRuleViolation, InvalidStatusTransitionError, PaymentExceedsBalanceError
)
from servistech.modules.audit.models import AuditAction
from servistech.modules.audit.sink import AuditSink, LoggingAuditSink
from servistech.modules.invoices.calculator import InvoiceCalculator, InvoiceTotals
from servistech.modules.invoices.models import (
    Invoice, InvoiceLineItem, Payment, InvoiceStatus, LOCAL_CURRENCY_METHODS
)
from servistech.modules.invoices.schemas import (
    InvoiceCreate, PaymentCreate, InvoiceQuoteRequest, InvoiceTotalsOut, DailySalesReport
)
from servistech.modules.rates.models import RateKind
from servistech.modules.rates.service import RateService

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.PARTIAL)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Inicio y fin (exclusivo) del día en UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def revenue_for_day(db: Session, store_id: UUID, day: date) -> Decimal:
    """Ventas del día: total USD de facturas PAID o PARTIAL creadas ese día."""
    start, end = day_bounds(day)
    total = db.query(func.coalesce(func.sum(Invoice.total_usd), 0)).filter(
        Invoice.store_id == store_id,
        Invoice.status.in_(REVENUE_STATUSES),
        Invoice.created_at >= start,
        Invoice.created_at < end
    ).scalar()
    return Decimal(str(total or 0))


def business_error(e: BusinessRuleViolation) -> HTTPException:
    if isinstance(e, InvalidStatusTransitionError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=e.to_detail())


class InvoiceService:
    """Emisión, cobro y cancelación de facturas multimoneda."""

    def __init__(
        self,
        db: Session,
        rate_service: RateService,
        calculator: Optional[InvoiceCalculator] = None,
        audit: Optional[AuditSink] = None
    ):
        self.db = db
        self.rate_service = rate_service
        self.calculator = calculator or InvoiceCalculator()
        self.audit = audit or LoggingAuditSink()

    def _rate_kind(self, requested: Optional[RateKind]) -> RateKind:
        return requested or RateKind(settings.INVOICE_RATE_KIND)

    def generate_invoice_number(self) -> str:
        """Número secuencial anual: F-{año}-{0001}"""
        year = datetime.now(timezone.utc).year
        prefix = f"F-{year}-"
        count = self.db.query(func.count(Invoice.id)).filter(
            Invoice.number.like(f"{prefix}%")
        ).scalar() or 0
        return f"{prefix}{count + 1:04d}"

    def quote(self, data: InvoiceQuoteRequest) -> InvoiceTotalsOut:
        """Previsualizar totales sin persistir (pantalla del POS)."""
        kind = self._rate_kind(data.rate_kind)
        rate_quote = self.rate_service.get_quote(kind)
        try:
            totals = self.calculator.compute_totals(
                data.items, data.payments, data.discount, rate_quote.value
            )
        except BusinessRuleViolation as e:
            raise business_error(e)
        return self._totals_out(totals, kind, rate_quote.is_backup)

    def create_invoice(self, invoice_data: InvoiceCreate, store_id: UUID, user_id: UUID) -> Invoice:
        """
        Crear factura fijando la tasa vigente.

        Los pagos incluidos se validan uno a uno, en orden, igual que si se
        registraran después con add_payment.
        """
        try:
            kind = self._rate_kind(invoice_data.rate_kind)
            rate = self.rate_service.get_current(kind)

            line_items = [
                InvoiceLineItem(
                    kind=item.kind,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=self.calculator.line_total(item.quantity, item.unit_price)
                )
                for item in invoice_data.items
            ]

            accepted: List[PaymentCreate] = []
            current_status = InvoiceStatus.PENDING
            for payment in invoice_data.payments:
                totals = self.calculator.apply_payment(
                    invoice_data.items, accepted, payment, invoice_data.discount, rate, current_status
                )
                accepted.append(payment)
                current_status = totals.status

            totals = self.calculator.compute_totals(
                invoice_data.items, accepted, invoice_data.discount, rate
            )

            invoice = Invoice(
                number=self.generate_invoice_number(),
                store_id=store_id,
                customer_id=invoice_data.customer_id,
                order_id=invoice_data.order_id,
                created_by=user_id,
                notes=invoice_data.notes,
                rate_kind=kind,
                line_items=line_items,
                payments=[self._build_payment(p, rate, user_id) for p in accepted]
            )
            self._apply_totals(invoice, totals)

            self.db.add(invoice)
            self.db.commit()
            self.db.refresh(invoice)

            logger.info(
                f"Invoice created: {invoice.number} total=${invoice.total_usd} "
                f"({invoice.total_local} VES @ {invoice.rate_applied}) status={invoice.status.value}"
            )
            self.audit.record(
                AuditAction.CREATE, "invoice", invoice.id,
                new_value={"number": invoice.number, "total_usd": invoice.total_usd, "status": invoice.status.value},
                user_id=user_id, store_id=store_id
            )
            return invoice

        except BusinessRuleViolation as e:
            self.db.rollback()
            raise business_error(e)
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating invoice: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error creando factura: {str(e)}"
            )

    def get_invoice_by_id(self, invoice_id: UUID, store_id: UUID, for_update: bool = False) -> Invoice:
        query = self.db.query(Invoice).filter(
            Invoice.id == invoice_id,
            Invoice.store_id == store_id
        )
        if for_update:
            query = query.with_for_update()
        else:
            query = query.options(selectinload(Invoice.line_items), selectinload(Invoice.payments))

        invoice = query.first()
        if not invoice:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Factura no encontrada"
            )
        return invoice

    def add_payment(self, invoice_id: UUID, payment_data: PaymentCreate, store_id: UUID, user_id: UUID) -> Invoice:
        """
        Registrar un pago.

        La fila de la factura se bloquea (SELECT ... FOR UPDATE) durante la
        validación del saldo para serializar pagos concurrentes.
        """
        try:
            invoice = self.get_invoice_by_id(invoice_id, store_id, for_update=True)
            rate = Decimal(invoice.rate_applied)

            try:
                totals = self.calculator.apply_payment(
                    invoice.line_items,
                    invoice.payments,
                    payment_data,
                    invoice.discount,
                    rate,
                    invoice.status
                )
            except PaymentExceedsBalanceError as e:
                logger.info(f"Payment rejected for invoice {invoice.number}: excess ${e.excess}")
                raise

            old_status = invoice.status
            old_surcharge = Decimal(invoice.surcharge_amount)
            invoice.payments.append(self._build_payment(payment_data, rate, user_id))
            self._apply_totals(invoice, totals)

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(
                f"Payment added to invoice {invoice.number}: {payment_data.method.value} ${payment_data.amount} "
                f"({old_status.value} -> {invoice.status.value})"
            )
            if Decimal(invoice.surcharge_amount) != old_surcharge:
                logger.info(f"Invoice {invoice.number} IGTF applied: ${invoice.surcharge_amount}")
            if old_status != invoice.status:
                self.audit.record(
                    AuditAction.STATUS_CHANGE, "invoice", invoice.id,
                    old_value={"status": old_status.value},
                    new_value={"status": invoice.status.value, "paid_total": invoice.paid_total},
                    user_id=user_id, store_id=store_id
                )
            return invoice

        except BusinessRuleViolation as e:
            self.db.rollback()
            raise business_error(e)
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error adding payment to invoice {invoice_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error agregando pago: {str(e)}"
            )

    def cancel_invoice(self, invoice_id: UUID, reason: str, store_id: UUID, user_id: UUID) -> Invoice:
        """
        Cancelar factura. Una factura pagada no puede cancelarse.
        """
        try:
            invoice = self.get_invoice_by_id(invoice_id, store_id, for_update=True)
            old_status = invoice.status
            invoice.status = self.calculator.cancel(invoice.status)
            invoice.cancelled_at = datetime.now(timezone.utc)
            invoice.cancel_reason = reason

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(f"Invoice {invoice.number} cancelled ({old_status.value}) - Reason: {reason}")
            self.audit.record(
                AuditAction.STATUS_CHANGE, "invoice", invoice.id,
                old_value={"status": old_status.value},
                new_value={"status": invoice.status.value, "reason": reason},
                user_id=user_id, store_id=store_id
            )
            return invoice

        except BusinessRuleViolation as e:
            self.db.rollback()
            raise business_error(e)
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error canceling invoice {invoice_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error cancelando factura: {str(e)}"
            )

    def get_invoices(
        self,
        store_id: UUID,
        status_filter: Optional[InvoiceStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> dict:
        query = self.db.query(Invoice).filter(Invoice.store_id == store_id)

        if status_filter:
            query = query.filter(Invoice.status == status_filter)
        if start_date:
            query = query.filter(Invoice.created_at >= day_bounds(start_date)[0])
        if end_date:
            query = query.filter(Invoice.created_at < day_bounds(end_date)[1])
        if search:
            query = query.filter(Invoice.number.ilike(f"%{search}%"))

        total = query.count()
        invoices = query.order_by(Invoice.created_at.desc()).offset(offset).limit(limit).all()
        return {"invoices": invoices, "total": total, "limit": limit, "offset": offset}

    def revenue_for_day(self, store_id: UUID, day: date) -> Decimal:
        return revenue_for_day(self.db, store_id, day)

    def get_daily_report(self, store_id: UUID, day: date) -> DailySalesReport:
        start, end = day_bounds(day)
        day_filter = and_(
            Invoice.store_id == store_id,
            Invoice.status.in_(REVENUE_STATUSES),
            Invoice.created_at >= start,
            Invoice.created_at < end
        )

        invoices = self.db.query(Invoice).filter(day_filter).all()
        by_method = self.db.query(Payment.method, func.sum(Payment.amount)).join(
            Invoice, Payment.invoice_id == Invoice.id
        ).filter(day_filter).group_by(Payment.method).all()

        payment_methods: Dict[str, Decimal] = {
            method.value: Decimal(str(amount or 0)) for method, amount in by_method
        }

        return DailySalesReport(
            date=day,
            store_id=store_id,
            invoice_count=len(invoices),
            total_sales=sum((Decimal(i.total_usd) for i in invoices), Decimal('0')),
            total_paid=sum((Decimal(i.paid_total) for i in invoices), Decimal('0')),
            surcharge_collected=sum((Decimal(i.surcharge_amount) for i in invoices), Decimal('0')),
            payment_methods=payment_methods
        )

    @staticmethod
    def _build_payment(payment: PaymentCreate, rate: Decimal, user_id: UUID) -> Payment:
        amount_local = None
        if payment.method in LOCAL_CURRENCY_METHODS:
            amount_local = (Decimal(payment.amount) * rate).quantize(Decimal('0.01'))
        return Payment(
            method=payment.method,
            amount=payment.amount,
            amount_local=amount_local,
            reference=payment.reference,
            bank_name=payment.bank_name,
            phone_number=payment.phone_number,
            email=payment.email,
            created_by=user_id
        )

    @staticmethod
    def _apply_totals(invoice: Invoice, totals: InvoiceTotals) -> None:
        invoice.subtotal = totals.subtotal
        invoice.surcharge_amount = totals.surcharge_amount
        invoice.discount = totals.discount
        invoice.discount_clamped = totals.discount_clamped
        invoice.total_usd = totals.total_usd
        invoice.rate_applied = totals.rate
        invoice.total_local = totals.total_local
        invoice.paid_total = totals.paid_total
        if totals.status == InvoiceStatus.PAID and invoice.status != InvoiceStatus.PAID:
            invoice.paid_at = datetime.now(timezone.utc)
        invoice.status = totals.status

    @staticmethod
    def _totals_out(totals: InvoiceTotals, kind: RateKind, is_backup: bool) -> InvoiceTotalsOut:
        return InvoiceTotalsOut(
            subtotal=totals.subtotal,
            surcharge_applied=totals.surcharge_applied,
            surcharge_amount=totals.surcharge_amount,
            discount=totals.discount,
            discount_clamped=totals.discount_clamped,
            total_usd=totals.total_usd,
            rate=totals.rate,
            rate_kind=kind,
            rate_is_backup=is_backup,
            total_local=totals.total_local,
            paid_total=totals.paid_total,
            balance_due=totals.balance_due,
            status=totals.status
        )
