"""
Tareas de Celery para persistir eventos de auditoría.
"""
import logging
from typing import Any, Dict

from servistech.core.celery import celery_app
from servistech.database.database import SessionLocal
from servistech.modules.audit.service import AuditService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def record_audit_event(self, event: Dict[str, Any]):
    """
    Guardar un evento de auditoría en la base de datos.
    """
    db = SessionLocal()
    try:
        log = AuditService(db).save_event(event)
        logger.info(f"Audit event stored: {event['action']} {event['entity_type']}:{event['entity_id']}")
        return {"status": "success", "id": str(log.id)}

    except Exception as exc:
        db.rollback()
        logger.error(f"Audit event persistence failed: {str(exc)}")

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()
