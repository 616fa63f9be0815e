from fastapi import APIRouter, Depends, Query, status
from typing import Dict

from servistech.modules.auth.dependencies import AuthDependencies
from servistech.modules.auth.schemas import AuthContext
from servistech.modules.rates.converter import CurrencyConverter
from servistech.modules.rates.dependencies import (
    get_rate_service, get_rate_synchronizer, get_currency_converter
)
from servistech.modules.rates.models import RateKind
from servistech.modules.rates.schemas import (
    RateQuote, RateHistory, ManualRateUpdate, RateSyncResult,
    ConversionRequest, ConversionResult
)
from servistech.modules.rates.service import RateService, RateSynchronizer, RateAdminService

rates_router = APIRouter(prefix="/rates", tags=["Exchange Rates"])

ADMIN_ROLES = ["SUPER_ADMIN"]
READ_ROLES = ["SUPER_ADMIN", "GERENTE", "ENCARGADA", "ANFITRION", "TECNICO", "QA", "ALMACEN", "MENSAJERO"]


@rates_router.get("/current", response_model=RateQuote)
def get_current_official_rate(rate_service: RateService = Depends(get_rate_service)):
    """
    Tasa oficial vigente (endpoint público, sin autenticación).

    `is_backup` indica que la última sincronización falló y el valor es el
    último conocido.
    """
    return rate_service.get_quote(RateKind.OFFICIAL)


@rates_router.get("/{rate_kind}/current", response_model=RateQuote)
def get_current_rate(
    rate_kind: RateKind,
    rate_service: RateService = Depends(get_rate_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(READ_ROLES))
):
    return rate_service.get_quote(rate_kind)


@rates_router.get("/{rate_kind}/history", response_model=RateHistory)
def get_rate_history(
    rate_kind: RateKind,
    limit: int = Query(30, ge=1, le=365),
    rate_service: RateService = Depends(get_rate_service),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(READ_ROLES))
):
    """Histórico de observaciones, la más reciente primero."""
    return rate_service.get_history(rate_kind, limit=limit)


@rates_router.post("/convert", response_model=ConversionResult)
def convert_amount(
    data: ConversionRequest,
    converter: CurrencyConverter = Depends(get_currency_converter),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(READ_ROLES))
):
    return converter.convert(data.amount, data.direction, data.rate_kind)


@rates_router.post("/{rate_kind}/manual", response_model=RateSyncResult, status_code=status.HTTP_201_CREATED)
def set_manual_rate(
    rate_kind: RateKind,
    data: ManualRateUpdate,
    synchronizer: RateSynchronizer = Depends(get_rate_synchronizer),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES))
):
    """
    Cargar una tasa manualmente.

    Solo SUPER_ADMIN. Queda registrada en auditoría como RATE_MANUAL.
    """
    return RateAdminService(synchronizer).set_manual_rate(rate_kind, data.value, auth_context.user_id)


@rates_router.post("/{rate_kind}/sync", response_model=RateSyncResult)
def sync_rate(
    rate_kind: RateKind,
    synchronizer: RateSynchronizer = Depends(get_rate_synchronizer),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES))
):
    """Forzar la sincronización de un tipo de tasa con su fuente."""
    return RateAdminService(synchronizer).force_sync(rate_kind)


@rates_router.post("/sync", response_model=Dict[str, RateSyncResult])
def sync_all_rates(
    synchronizer: RateSynchronizer = Depends(get_rate_synchronizer),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES))
):
    """Forzar la sincronización de la tasa oficial y la paralela."""
    return RateAdminService(synchronizer).force_sync()
