"""
Servicios de tasa de cambio: sincronización con las fuentes externas y
lectura de la tasa vigente a través del caché.
"""
import logging
import threading
from decimal import Decimal
from typing import Dict, Mapping, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from servistech.core.config import settings
from servistech.common.exceptions import RateSourceError, InvalidRateValueError
from servistech.modules.audit.models import AuditAction
from servistech.modules.audit.sink import AuditSink, LoggingAuditSink
from servistech.modules.rates.cache import RateCache
from servistech.modules.rates.models import ExchangeRate, RateKind, RateProvenance
from servistech.modules.rates.providers import RateProvider, BCVRateProvider, BinanceRateProvider
from servistech.modules.rates.schemas import (
    RateQuote, RateSyncResult, RateHistory, ExchangeRateOut
)
from servistech.modules.rates.store import RateStore

logger = logging.getLogger(__name__)


def new_sync_locks() -> Dict[RateKind, threading.Lock]:
    return {kind: threading.Lock() for kind in RateKind}


def default_rate(kind: RateKind) -> Decimal:
    if kind == RateKind.PARALLEL:
        return Decimal(str(settings.DEFAULT_PARALLEL_RATE))
    return Decimal(str(settings.DEFAULT_OFFICIAL_RATE))


class RateService:
    """Lectura de la tasa vigente (caché -> base de datos -> valor por defecto)."""

    def __init__(self, db: Session, cache: RateCache):
        self.db = db
        self.cache = cache
        self.store = RateStore(db)

    def get_quote(self, kind: RateKind, use_cache: bool = True) -> RateQuote:
        if use_cache:
            cached = self.cache.get(kind)
            if cached is not None:
                return cached

        observation = self.store.current(kind)
        if observation is None:
            logger.warning(f"No {kind.value} rate stored, using default {default_rate(kind)}")
            return RateQuote(
                rate_kind=kind,
                value=default_rate(kind),
                is_default=True
            )

        quote = RateQuote(
            rate_kind=kind,
            value=Decimal(observation.value),
            provenance=observation.provenance,
            observed_at=observation.observed_at,
            is_backup=observation.is_backup
        )
        self.cache.set(kind, quote)
        return quote

    def get_current(self, kind: RateKind, use_cache: bool = True) -> Decimal:
        """
        Tasa vigente para `kind`. Nunca devuelve None.
        """
        return self.get_quote(kind, use_cache=use_cache).value

    def get_history(self, kind: RateKind, limit: int = 30) -> RateHistory:
        rates = self.store.history(kind, limit=limit)
        return RateHistory(
            rate_kind=kind,
            rates=[ExchangeRateOut.model_validate(r) for r in rates],
            total=len(rates)
        )


class RateSynchronizer:
    """
    Sincroniza las tasas con sus fuentes externas.

    Un fallo de la fuente nunca se propaga: se marca la última observación
    como BACKUP y se devuelve un resultado fallido con el motivo.
    """

    def __init__(
        self,
        db: Session,
        cache: RateCache,
        providers: Optional[Mapping[RateKind, RateProvider]] = None,
        locks: Optional[Mapping[RateKind, threading.Lock]] = None,
        audit: Optional[AuditSink] = None
    ):
        self.db = db
        self.cache = cache
        self.store = RateStore(db)
        self.rates = RateService(db, cache)
        self.providers = providers if providers is not None else self._default_providers()
        self.locks = locks if locks is not None else new_sync_locks()
        self.audit = audit or LoggingAuditSink()

    def _default_providers(self) -> Dict[RateKind, RateProvider]:
        return {
            RateKind.OFFICIAL: BCVRateProvider(),
            RateKind.PARALLEL: BinanceRateProvider(
                official_rate=lambda: self.rates.get_current(RateKind.OFFICIAL, use_cache=False)
            ),
        }

    def sync(
        self,
        kind: RateKind,
        manual_value: Optional[Decimal] = None,
        user_id: Optional[UUID] = None
    ) -> RateSyncResult:
        """
        Registrar una nueva observación para `kind`.

        Args:
            kind: tipo de tasa
            manual_value: valor cargado por un administrador; omite la fuente externa
            user_id: usuario que hace la carga manual

        Returns:
            RateSyncResult con la observación nueva o el motivo del fallo

        Raises:
            InvalidRateValueError: si manual_value no es un número finito mayor a 0
        """
        with self.locks[kind]:
            if manual_value is not None:
                return self._apply_manual(kind, manual_value, user_id)

            provider = self.providers.get(kind)
            if provider is None:
                return self._handle_failure(kind, f"No hay proveedor configurado para {kind.value}")

            try:
                fetched = provider.fetch()
            except RateSourceError as e:
                return self._handle_failure(kind, e.message)

            observation = self.store.append(
                kind,
                fetched.value,
                RateProvenance.AUTOMATIC,
                source=fetched.source,
                source_price=fetched.source_price
            )
            self.cache.clear_all()
            logger.info(f"{kind.value} rate synced: {observation.value} from {fetched.source}")
            return self._result(kind, observation)

    def sync_all(self) -> Dict[str, RateSyncResult]:
        # La paralela depende de la oficial recién sincronizada
        results = {}
        for kind in (RateKind.OFFICIAL, RateKind.PARALLEL):
            results[kind.value] = self.sync(kind)
        self.cache.clear_all()
        return results

    def _apply_manual(self, kind: RateKind, value: Decimal, user_id: Optional[UUID]) -> RateSyncResult:
        value = Decimal(str(value))
        if not value.is_finite() or value <= 0:
            raise InvalidRateValueError(value)

        previous = self.store.latest(kind)
        previous_value = previous.value if previous else None
        observation = self.store.append(
            kind, value, RateProvenance.MANUAL, source="MANUAL", updated_by=user_id
        )
        self.cache.clear_all()
        logger.info(f"{kind.value} rate manually set to {observation.value} by {user_id}")

        self.audit.record(
            AuditAction.RATE_MANUAL,
            "rate",
            observation.id,
            old_value={"value": previous_value} if previous_value is not None else None,
            new_value={"value": observation.value, "rate_kind": kind.value},
            user_id=user_id
        )
        return self._result(kind, observation)

    def _handle_failure(self, kind: RateKind, reason: str) -> RateSyncResult:
        backup_marked = self.store.mark_latest_as_backup(kind)
        if backup_marked:
            self.cache.invalidate(kind)

        fallback = self.store.latest(kind)
        logger.warning(
            f"{kind.value} rate sync failed: {reason}. "
            f"Using {'last known ' + str(fallback.value) if fallback else 'default ' + str(default_rate(kind))}"
        )
        return RateSyncResult(
            rate_kind=kind,
            success=False,
            observation=ExchangeRateOut.model_validate(fallback) if fallback else None,
            failure_reason=reason,
            backup_marked=backup_marked
        )

    @staticmethod
    def _result(kind: RateKind, observation: ExchangeRate) -> RateSyncResult:
        return RateSyncResult(
            rate_kind=kind,
            success=True,
            observation=ExchangeRateOut.model_validate(observation)
        )


class RateAdminService:
    """Operaciones de administración expuestas por la API."""

    def __init__(self, synchronizer: RateSynchronizer):
        self.synchronizer = synchronizer

    def set_manual_rate(self, kind: RateKind, value: Decimal, user_id: UUID) -> RateSyncResult:
        try:
            return self.synchronizer.sync(kind, manual_value=value, user_id=user_id)
        except InvalidRateValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=e.to_detail()
            )
        except Exception as e:
            self.synchronizer.db.rollback()
            logger.error(f"Error setting manual rate: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error registrando tasa manual: {str(e)}"
            )

    def force_sync(self, kind: Optional[RateKind] = None):
        try:
            if kind is None:
                return self.synchronizer.sync_all()
            return self.synchronizer.sync(kind)
        except Exception as e:
            self.synchronizer.db.rollback()
            logger.error(f"Error forcing rate sync: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error sincronizando tasas: {str(e)}"
            )
