from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from uuid import UUID
from datetime import date, datetime, timezone

from servistech.dependencies.dbDependecies import db_dependency
from servistech.modules.auth.dependencies import AuthDependencies, get_store_scope
from servistech.modules.auth.schemas import AuthContext
from servistech.modules.targets.service import TargetService
from servistech.modules.targets.schemas import (
    FixedExpenseCreate, FixedExpenseUpdate, FixedExpenseOut, FixedExpenseList,
    CashRegisterOpen, CashRegisterOut, PettyCashExpenseCreate, PettyCashExpenseOut,
    DailyTargetOut, TargetDashboard
)

targets_router = APIRouter(prefix="/targets", tags=["Daily Targets"])

MANAGER_ROLES = ["SUPER_ADMIN", "GERENTE"]
REGISTER_ROLES = ["SUPER_ADMIN", "GERENTE", "ENCARGADA"]


@targets_router.post("/expenses/fixed", response_model=FixedExpenseOut, status_code=status.HTTP_201_CREATED)
def create_fixed_expense(
    expense_data: FixedExpenseCreate,
    db: db_dependency,
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return TargetService(db).create_fixed_expense(expense_data, store_id)


@targets_router.get("/expenses/fixed", response_model=FixedExpenseList)
def list_fixed_expenses(
    db: db_dependency,
    include_inactive: bool = Query(False),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Gastos fijos de la sede con total mensual y promedio diario."""
    return TargetService(db).list_fixed_expenses(store_id, include_inactive)


@targets_router.patch("/expenses/fixed/{expense_id}", response_model=FixedExpenseOut)
def update_fixed_expense(
    expense_id: UUID,
    expense_data: FixedExpenseUpdate,
    db: db_dependency,
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return TargetService(db).update_fixed_expense(expense_id, expense_data, store_id)


@targets_router.post("/registers", response_model=CashRegisterOut, status_code=status.HTTP_201_CREATED)
def open_register(
    register_data: CashRegisterOpen,
    db: db_dependency,
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REGISTER_ROLES))
):
    return TargetService(db).open_register(register_data, store_id, auth_context.user_id)


@targets_router.post("/registers/{register_id}/close", response_model=CashRegisterOut)
def close_register(
    register_id: UUID,
    db: db_dependency,
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REGISTER_ROLES))
):
    return TargetService(db).close_register(register_id, store_id)


@targets_router.post(
    "/registers/{register_id}/expenses",
    response_model=PettyCashExpenseOut,
    status_code=status.HTTP_201_CREATED
)
def create_petty_cash_expense(
    register_id: UUID,
    expense_data: PettyCashExpenseCreate,
    db: db_dependency,
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REGISTER_ROLES))
):
    """
    Registrar un gasto de caja chica.

    Requiere caja abierta y al menos un comprobante.
    """
    return TargetService(db).create_petty_cash_expense(register_id, expense_data, store_id, auth_context.user_id)


@targets_router.get("/daily-calculation", response_model=DailyTargetOut)
def daily_calculation(
    db: db_dependency,
    target_date: Optional[date] = Query(None, alias="date"),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(REGISTER_ROLES))
):
    """Calcular y guardar la meta de venta del día (por defecto hoy, UTC)."""
    day = target_date or datetime.now(timezone.utc).date()
    return TargetService(db).calculate_daily(store_id, day)


@targets_router.get("/dashboard", response_model=TargetDashboard)
def dashboard(
    db: db_dependency,
    days: int = Query(30, ge=1, le=365),
    store_id: UUID = Depends(get_store_scope),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return TargetService(db).get_dashboard(store_id, days)
