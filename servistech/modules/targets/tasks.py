"""
Tarea nocturna de Celery que recalcula la meta diaria de cada sede.
"""
import logging
from datetime import datetime, timezone

from fastapi import HTTPException

from servistech.core.celery import celery_app
from servistech.database.database import SessionLocal
from servistech.modules.targets.service import TargetService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def recalculate_daily_targets(self):
    """Recalcular la meta del día para todas las sedes con gastos fijos activos."""
    day = datetime.now(timezone.utc).date()
    db = SessionLocal()
    try:
        service = TargetService(db)
        stores = service.stores_with_fixed_expenses()
        failed = []
        for store_id in stores:
            try:
                service.calculate_daily(store_id, day)
            except HTTPException as e:
                logger.error(f"Daily target for store {store_id} failed: {e.detail}")
                failed.append(str(store_id))

        logger.info(f"Daily targets recalculated for {len(stores) - len(failed)} of {len(stores)} stores")
        return {"status": "success", "date": day.isoformat(), "stores": len(stores), "failed": failed}
    finally:
        db.close()
