from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, status
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime, timezone
import logging

from servistech.common.exceptions import BusinessRuleViolation
from servistech.modules.audit.models import AuditAction
from servistech.modules.audit.sink import AuditSink, LoggingAuditSink
from servistech.modules.commissions.engine import CommissionEngine
from servistech.modules.commissions.models import Commission, CommissionDebit, CommissionStatus
from servistech.modules.commissions.schemas import (
    OrderSnapshot, CommissionComputeResult, CommissionOut, DebitCreate,
    CommissionSummary, StatusBreakdown, PayrollLine, PayrollReport
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


class CommissionService:
    """Persistencia de comisiones, contra-cargos y reportes de nómina."""

    def __init__(self, db: Session, engine: Optional[CommissionEngine] = None, audit: Optional[AuditSink] = None):
        self.db = db
        self.engine = engine or CommissionEngine()
        self.audit = audit or LoggingAuditSink()

    def compute_for_order(self, order: OrderSnapshot) -> CommissionComputeResult:
        """
        Calcular y guardar la comisión de una orden completada.

        Nunca lanza excepción: el flujo de cierre de la orden no debe
        bloquearse por la comisión. Es idempotente por orden.
        """
        try:
            existing = self.db.query(Commission).filter(Commission.order_id == order.id).first()
            if existing:
                logger.info(f"Commission for order {order.id} already exists ({existing.id})")
                return CommissionComputeResult(
                    created=False,
                    commission=CommissionOut.model_validate(existing),
                    reason="La orden ya tiene comisión"
                )

            commission = self.engine.compute_for_order(order)
            if commission is None:
                return CommissionComputeResult(created=False, reason="La orden no genera comisión")

            self.db.add(commission)
            self.db.commit()
            self.db.refresh(commission)

            logger.info(
                f"Commission {commission.id} created for order {order.id}: "
                f"{commission.technician_role} net=${commission.net_amount}"
            )
            return CommissionComputeResult(created=True, commission=CommissionOut.model_validate(commission))

        except IntegrityError:
            self.db.rollback()
            logger.info(f"Commission for order {order.id} created concurrently, skipping")
            return CommissionComputeResult(created=False, reason="La orden ya tiene comisión")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error calculating commission for order {order.id}: {str(e)}", exc_info=True)
            return CommissionComputeResult(created=False, reason=f"Error calculando comisión: {str(e)}")

    def get_commission(self, commission_id: UUID, store_id: Optional[UUID] = None) -> Commission:
        query = self.db.query(Commission).options(selectinload(Commission.debits)).filter(
            Commission.id == commission_id
        )
        if store_id is not None:
            query = query.filter(Commission.store_id == store_id)
        commission = query.first()
        if not commission:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Comisión no encontrada"
            )
        return commission

    def get_commissions(
        self,
        store_id: Optional[UUID] = None,
        technician_id: Optional[UUID] = None,
        status_filter: Optional[CommissionStatus] = None,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None,
        limit: int = 20,
        offset: int = 0
    ) -> dict:
        query = self.db.query(Commission)
        if store_id is not None:
            query = query.filter(Commission.store_id == store_id)
        if technician_id:
            query = query.filter(Commission.technician_id == technician_id)
        if status_filter:
            query = query.filter(Commission.status == status_filter)
        if period_month:
            query = query.filter(Commission.period_month == period_month)
        if period_year:
            query = query.filter(Commission.period_year == period_year)

        total = query.count()
        commissions = query.options(selectinload(Commission.debits)).order_by(
            Commission.created_at.desc()
        ).offset(offset).limit(limit).all()
        return {"commissions": commissions, "total": total, "limit": limit, "offset": offset}

    def batch_pay(self, commission_ids: List[UUID], paid_by: UUID, store_id: Optional[UUID] = None) -> int:
        """Pagar en lote las comisiones PENDIENTE; las demás se omiten."""
        try:
            query = self.db.query(Commission).filter(Commission.id.in_(commission_ids))
            if store_id is not None:
                query = query.filter(Commission.store_id == store_id)
            commissions = query.with_for_update().all()

            count = self.engine.batch_pay(commissions, paid_by)
            self.db.commit()

            logger.info(f"{count} of {len(commission_ids)} commissions paid by {paid_by}")
            self.audit.record(
                AuditAction.COMMISSION_PAY, "commission", "batch-payment",
                old_value={"status": CommissionStatus.PENDIENTE.value},
                new_value={"status": CommissionStatus.PAGADA.value, "count": count, "ids": commission_ids},
                user_id=paid_by, store_id=store_id
            )
            return count

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error paying commissions: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al pagar comisiones: {str(e)}"
            )

    def apply_debit(self, debit_data: DebitCreate, approved_by: UUID, store_id: Optional[UUID] = None):
        try:
            commission = self.get_commission(debit_data.commission_id, store_id)
            old_net = commission.net_amount
            old_status = commission.status

            debit = self.engine.apply_debit(
                commission,
                debit_data.reason,
                debit_data.amount,
                approved_by=approved_by,
                description=debit_data.description,
                photos=debit_data.photos
            )
            self.db.commit()
            self.db.refresh(debit)
            self.db.refresh(commission)

            logger.info(
                f"Debit {debit.id} ({debit.reason.value} ${debit.amount}) applied to commission {commission.id}: "
                f"net {old_net} -> {commission.net_amount}"
            )
            self.audit.record(
                AuditAction.DEBIT_APPLY, "debit", debit.id,
                old_value={"net_amount": old_net, "status": old_status.value},
                new_value={
                    "net_amount": commission.net_amount,
                    "status": commission.status.value,
                    "debit_amount": debit.amount
                },
                user_id=approved_by, store_id=commission.store_id
            )
            return debit, commission

        except BusinessRuleViolation as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating debit: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al crear contra-cargo: {str(e)}"
            )

    def reverse_debit(self, debit_id: UUID, note: str, reversed_by: UUID, store_id: Optional[UUID] = None):
        try:
            debit = self.db.query(CommissionDebit).filter(CommissionDebit.id == debit_id).first()
            if not debit:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Contra-cargo no encontrado"
                )
            commission = self.get_commission(debit.commission_id, store_id)
            old_net = commission.net_amount

            self.engine.reverse_debit(commission, debit, reversed_by, note)
            self.db.commit()
            self.db.refresh(debit)
            self.db.refresh(commission)

            logger.info(f"Debit {debit.id} reversed by {reversed_by}: net {old_net} -> {commission.net_amount}")
            self.audit.record(
                AuditAction.DEBIT_REVERSE, "debit", debit.id,
                old_value={"net_amount": old_net},
                new_value={"net_amount": commission.net_amount, "status": commission.status.value, "note": note},
                user_id=reversed_by, store_id=commission.store_id
            )
            return debit, commission

        except BusinessRuleViolation as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error reversing debit {debit_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al revertir contra-cargo: {str(e)}"
            )

    def get_debits_by_technician(self, technician_id: UUID, limit: int = 20, offset: int = 0) -> List[CommissionDebit]:
        return self.db.query(CommissionDebit).filter(
            CommissionDebit.technician_id == technician_id
        ).order_by(CommissionDebit.created_at.desc()).offset(offset).limit(limit).all()

    def get_summary(
        self,
        technician_id: UUID,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None
    ) -> CommissionSummary:
        filters = [Commission.technician_id == technician_id]
        if period_month:
            filters.append(Commission.period_month == period_month)
        if period_year:
            filters.append(Commission.period_year == period_year)

        count, gross, amount, flat, debits, net = self.db.query(
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.gross_profit), 0),
            func.coalesce(func.sum(Commission.commission_amount), 0),
            func.coalesce(func.sum(Commission.flat_rate_amount), 0),
            func.coalesce(func.sum(Commission.debits_total), 0),
            func.coalesce(func.sum(Commission.net_amount), 0)
        ).filter(*filters).one()

        by_status = self.db.query(
            Commission.status,
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.net_amount), 0)
        ).filter(*filters).group_by(Commission.status).all()

        return CommissionSummary(
            technician_id=technician_id,
            total_commissions=count,
            total_gross_profit=Decimal(str(gross)),
            total_amount=Decimal(str(amount)),
            total_flat_rate=Decimal(str(flat)),
            total_debits=Decimal(str(debits)),
            net_payable=Decimal(str(net)),
            by_status=[
                StatusBreakdown(status=s, count=c, net_amount=Decimal(str(n)))
                for s, c, n in by_status
            ]
        )

    def get_payroll_report(
        self,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None,
        store_id: Optional[UUID] = None
    ) -> PayrollReport:
        now = datetime.now(timezone.utc)
        period_month = period_month or now.month
        period_year = period_year or now.year

        query = self.db.query(
            Commission.technician_id,
            func.max(Commission.technician_name),
            func.max(Commission.technician_role),
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.commission_amount), 0),
            func.coalesce(func.sum(Commission.flat_rate_amount), 0),
            func.coalesce(func.sum(Commission.debits_total), 0),
            func.coalesce(func.sum(Commission.net_amount), 0)
        ).filter(
            Commission.period_month == period_month,
            Commission.period_year == period_year
        )
        if store_id is not None:
            query = query.filter(Commission.store_id == store_id)

        rows = query.group_by(Commission.technician_id).all()
        data = [
            PayrollLine(
                technician_id=tech_id,
                technician_name=name,
                technician_role=role,
                orders_completed=count,
                commission_amount=Decimal(str(amount)),
                flat_rate_amount=Decimal(str(flat)),
                total_debits=Decimal(str(debits)),
                net_payable=Decimal(str(net))
            )
            for tech_id, name, role, count, amount, flat, debits, net in rows
        ]

        return PayrollReport(
            period_month=period_month,
            period_year=period_year,
            data=data,
            total_payable=sum((line.net_payable for line in data), ZERO),
            total_orders=sum(line.orders_completed for line in data)
        )
