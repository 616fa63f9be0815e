"""
Tareas periódicas de Celery para sincronizar las tasas.
"""
import logging

from servistech.core.celery import celery_app
from servistech.core.config import settings
from servistech.database.database import SessionLocal
from servistech.modules.audit.sink import get_audit_sink
from servistech.modules.rates.cache import RateCache
from servistech.modules.rates.service import RateSynchronizer, new_sync_locks

logger = logging.getLogger(__name__)

# Estado del proceso worker
worker_rate_cache = RateCache()
worker_sync_locks = new_sync_locks()


@celery_app.task(bind=True)
def sync_exchange_rates(self):
    """
    Sincronizar la tasa oficial (BCV) y la paralela.

    Los fallos de la fuente no lanzan excepción: quedan en el resultado y la
    última tasa conocida se marca como respaldo.
    """
    if not settings.RATE_SYNC_ENABLED:
        logger.info("Rate sync disabled, skipping")
        return {"status": "skipped"}

    db = SessionLocal()
    try:
        synchronizer = RateSynchronizer(
            db, worker_rate_cache, locks=worker_sync_locks, audit=get_audit_sink()
        )
        results = synchronizer.sync_all()
        summary = {kind: result.success for kind, result in results.items()}
        logger.info(f"Scheduled rate sync finished: {summary}")
        return {"status": "success", "results": summary}
    finally:
        db.close()
