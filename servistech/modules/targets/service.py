from sqlalchemy.orm import Session
from sqlalchemy import func
from fastapi import HTTPException, status
from typing import Optional, List, Protocol
from uuid import UUID
from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime, timedelta, timezone
import logging

from servistech.common.exceptions import ConfigurationError
from servistech.modules.invoices.service import day_bounds, revenue_for_day
from servistech.modules.targets.calculator import TargetCalculator
from servistech.modules.targets.models import (
    FixedExpense, CashRegister, CashRegisterStatus, PettyCashExpense, DailyTarget
)
from servistech.modules.targets.schemas import (
    FixedExpenseCreate, FixedExpenseUpdate, FixedExpenseOut, FixedExpenseList, CashRegisterOpen,
    PettyCashExpenseCreate, TargetDashboard, DailyTargetOut
)

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')
ZERO = Decimal('0')


class ExpenseSource(Protocol):
    def active_fixed_expense_amounts(self, store_id: UUID) -> List[Decimal]:
        ...

    def discretionary_spend(self, store_id: UUID, day: date) -> Decimal:
        ...


class SqlExpenseSource:
    """Gastos fijos activos y caja chica leídos de la base de datos."""

    def __init__(self, db: Session):
        self.db = db

    def active_fixed_expense_amounts(self, store_id: UUID) -> List[Decimal]:
        rows = self.db.query(FixedExpense.amount).filter(
            FixedExpense.store_id == store_id,
            FixedExpense.is_active.is_(True)
        ).all()
        return [Decimal(str(amount)) for (amount,) in rows]

    def discretionary_spend(self, store_id: UUID, day: date) -> Decimal:
        # Incluye cajas ya cerradas
        start, end = day_bounds(day)
        total = self.db.query(func.coalesce(func.sum(PettyCashExpense.amount), 0)).join(
            CashRegister, PettyCashExpense.register_id == CashRegister.id
        ).filter(
            CashRegister.store_id == store_id,
            PettyCashExpense.created_at >= start,
            PettyCashExpense.created_at < end
        ).scalar()
        return Decimal(str(total or 0))


class TargetService:
    """Metas diarias de venta y los gastos que las alimentan."""

    def __init__(
        self,
        db: Session,
        expenses: Optional[ExpenseSource] = None,
        calculator: Optional[TargetCalculator] = None
    ):
        self.db = db
        self.expenses = expenses or SqlExpenseSource(db)
        self._calculator = calculator

    @property
    def calculator(self) -> TargetCalculator:
        if self._calculator is None:
            self._calculator = TargetCalculator()
        return self._calculator

    def calculate_daily(self, store_id: UUID, day: date) -> DailyTarget:
        """
        Calcular (o recalcular) la meta del día para una sede.

        Es idempotente: existe una sola fila por (fecha, sede) y se
        sobrescribe en cada cálculo.

        Raises:
            HTTPException 500: si el margen deseado está mal configurado
        """
        try:
            figures = self.calculator.calculate(
                self.expenses.active_fixed_expense_amounts(store_id),
                self.expenses.discretionary_spend(store_id, day),
                revenue_for_day(self.db, store_id, day)
            )

            target = self.db.query(DailyTarget).filter(
                DailyTarget.date == day,
                DailyTarget.store_id == store_id
            ).first()
            if target is None:
                target = DailyTarget(date=day, store_id=store_id)
                self.db.add(target)

            target.fixed_expenses_allocated = figures.fixed_expenses_allocated
            target.discretionary_spend = figures.discretionary_spend
            target.desired_margin = figures.desired_margin
            target.target_amount = figures.target_amount
            target.net_target = figures.net_target
            target.actual_amount = figures.actual_amount
            target.is_met = figures.is_met

            self.db.commit()
            self.db.refresh(target)

            logger.info(
                f"Daily target {day} store {store_id}: target=${figures.target_amount} "
                f"actual=${figures.actual_amount} met={figures.is_met}"
            )
            return target

        except ConfigurationError as e:
            self.db.rollback()
            logger.error(f"Invalid target configuration: {e.message}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=e.to_detail()
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error calculating daily target for store {store_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al calcular la meta diaria: {str(e)}"
            )

    def get_dashboard(self, store_id: UUID, days: int = 30, today: Optional[date] = None) -> TargetDashboard:
        """Metas de los últimos `days` días con totales y tasa de cumplimiento."""
        today = today or datetime.now(timezone.utc).date()
        since = today - timedelta(days=days - 1)

        targets = self.db.query(DailyTarget).filter(
            DailyTarget.store_id == store_id,
            DailyTarget.date >= since,
            DailyTarget.date <= today
        ).order_by(DailyTarget.date.desc()).all()

        total_target = sum((Decimal(t.target_amount) for t in targets), ZERO)
        total_actual = sum((Decimal(t.actual_amount) for t in targets), ZERO)
        days_met = sum(1 for t in targets if t.is_met)
        count = len(targets)

        def ratio(value: Decimal) -> Decimal:
            if count == 0:
                return ZERO
            return (value / count).quantize(MONEY, rounding=ROUND_HALF_UP)

        return TargetDashboard(
            store_id=store_id,
            days=days,
            targets=[DailyTargetOut.model_validate(t) for t in targets],
            total_target=total_target,
            total_actual=total_actual,
            days_met=days_met,
            completion_rate=ratio(Decimal(days_met) * 100),
            average_target=ratio(total_target),
            average_actual=ratio(total_actual)
        )

    def create_fixed_expense(self, expense_data: FixedExpenseCreate, store_id: UUID) -> FixedExpense:
        try:
            expense = FixedExpense(store_id=store_id, **expense_data.model_dump())
            self.db.add(expense)
            self.db.commit()
            self.db.refresh(expense)
            logger.info(f"Fixed expense {expense.id} '{expense.name}' ${expense.amount}/month for store {store_id}")
            return expense
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating fixed expense: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al crear gasto fijo: {str(e)}"
            )

    def list_fixed_expenses(self, store_id: UUID, include_inactive: bool = False) -> FixedExpenseList:
        query = self.db.query(FixedExpense).filter(FixedExpense.store_id == store_id)
        if not include_inactive:
            query = query.filter(FixedExpense.is_active.is_(True))
        expenses = query.order_by(FixedExpense.name).all()

        total_monthly = sum((Decimal(e.amount) for e in expenses if e.is_active), ZERO)
        return FixedExpenseList(
            expenses=[FixedExpenseOut.model_validate(e) for e in expenses],
            total_monthly=total_monthly,
            daily_average=self.calculator.allocate_fixed([total_monthly]).quantize(MONEY, rounding=ROUND_HALF_UP)
        )

    def update_fixed_expense(self, expense_id: UUID, expense_data: FixedExpenseUpdate, store_id: UUID) -> FixedExpense:
        expense = self.db.query(FixedExpense).filter(
            FixedExpense.id == expense_id,
            FixedExpense.store_id == store_id
        ).first()
        if not expense:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Gasto fijo no encontrado"
            )

        try:
            for field, value in expense_data.model_dump(exclude_unset=True).items():
                setattr(expense, field, value)
            self.db.commit()
            self.db.refresh(expense)
            return expense
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating fixed expense {expense_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al actualizar gasto fijo: {str(e)}"
            )

    def open_register(self, register_data: CashRegisterOpen, store_id: UUID, user_id: UUID) -> CashRegister:
        existing = self.db.query(CashRegister).filter(
            CashRegister.store_id == store_id,
            CashRegister.status == CashRegisterStatus.OPEN
        ).first()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Ya existe una caja abierta en esta sede"
            )

        register = CashRegister(
            store_id=store_id,
            status=CashRegisterStatus.OPEN,
            opening_balance_usd=register_data.opening_balance_usd,
            opening_balance_local=register_data.opening_balance_local,
            opened_by=user_id,
            opened_at=datetime.now(timezone.utc)
        )
        self.db.add(register)
        self.db.commit()
        self.db.refresh(register)
        logger.info(f"Cash register {register.id} opened for store {store_id}")
        return register

    def close_register(self, register_id: UUID, store_id: UUID) -> CashRegister:
        register = self._get_register(register_id, store_id)
        if register.status != CashRegisterStatus.OPEN:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="La caja ya está cerrada"
            )
        register.status = CashRegisterStatus.CLOSED
        register.closed_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(register)
        logger.info(f"Cash register {register.id} closed for store {store_id}")
        return register

    def create_petty_cash_expense(
        self,
        register_id: UUID,
        expense_data: PettyCashExpenseCreate,
        store_id: UUID,
        user_id: UUID
    ) -> PettyCashExpense:
        """
        Registrar un gasto de caja chica.

        La caja debe estar abierta y el gasto debe traer al menos un comprobante.
        """
        register = self._get_register(register_id, store_id)
        if register.status != CashRegisterStatus.OPEN:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="La caja está cerrada"
            )
        if not expense_data.receipt_photos:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Se requiere al menos un comprobante"
            )

        try:
            expense = PettyCashExpense(
                register_id=register.id,
                store_id=store_id,
                description=expense_data.description,
                amount=expense_data.amount,
                category=expense_data.category,
                receipt_photos=expense_data.receipt_photos,
                created_by=user_id
            )
            self.db.add(expense)
            self.db.commit()
            self.db.refresh(expense)
            logger.info(f"Petty cash expense {expense.id} ${expense.amount} on register {register.id}")
            return expense
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating petty cash expense: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error al registrar gasto: {str(e)}"
            )

    def stores_with_fixed_expenses(self) -> List[UUID]:
        rows = self.db.query(FixedExpense.store_id).filter(
            FixedExpense.is_active.is_(True)
        ).distinct().all()
        return [store_id for (store_id,) in rows]

    def _get_register(self, register_id: UUID, store_id: UUID) -> CashRegister:
        register = self.db.query(CashRegister).filter(
            CashRegister.id == register_id,
            CashRegister.store_id == store_id
        ).first()
        if not register:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Caja no encontrada"
            )
        return register
