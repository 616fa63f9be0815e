"""
Dependencias del módulo de tasas.

El caché y los locks de sincronización son objetos del proceso, creados en
main.py y guardados en app.state.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from servistech.database.database import get_db
from servistech.modules.audit.sink import AuditSink, get_audit_sink
from servistech.modules.rates.cache import RateCache
from servistech.modules.rates.converter import CurrencyConverter
from servistech.modules.rates.service import RateService, RateSynchronizer


def get_rate_cache(request: Request) -> RateCache:
    return request.app.state.rate_cache


def get_rate_service(
    db: Session = Depends(get_db),
    cache: RateCache = Depends(get_rate_cache)
) -> RateService:
    return RateService(db, cache)


def get_rate_synchronizer(
    request: Request,
    db: Session = Depends(get_db),
    cache: RateCache = Depends(get_rate_cache),
    audit: AuditSink = Depends(get_audit_sink)
) -> RateSynchronizer:
    return RateSynchronizer(
        db,
        cache,
        providers=getattr(request.app.state, "rate_providers", None),
        locks=request.app.state.rate_sync_locks,
        audit=audit
    )


def get_currency_converter(rate_service: RateService = Depends(get_rate_service)) -> CurrencyConverter:
    return CurrencyConverter(rate_service.get_quote)
