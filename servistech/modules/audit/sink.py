"""
Sink de auditoría para cambios financieros.

Registrar un evento nunca debe hacer fallar la operación que lo origina:
cualquier error del sink se registra en el log y se descarta.
"""
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder

from servistech.core.config import settings
from servistech.modules.audit.models import AuditAction

logger = logging.getLogger(__name__)


class AuditSink:
    """Interfaz base; las subclases implementan `_emit`."""

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: Any,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        user_id: Optional[UUID] = None,
        store_id: Optional[UUID] = None
    ) -> None:
        event = jsonable_encoder({
            "action": action.value,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "old_value": old_value,
            "new_value": new_value,
            "user_id": user_id,
            "store_id": store_id,
        })
        try:
            self._emit(event)
        except Exception as e:
            logger.error(f"Audit event {action.value} for {entity_type}:{entity_id} dropped: {e}", exc_info=True)

    def _emit(self, event: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    def _emit(self, event: Dict[str, Any]) -> None:
        logger.info(f"AUDIT {event['action']} {event['entity_type']}:{event['entity_id']} by {event['user_id']}")


class CeleryAuditSink(AuditSink):
    """Despacha el evento a la tarea `record_audit_event`, que lo persiste."""

    def _emit(self, event: Dict[str, Any]) -> None:
        from servistech.modules.audit.tasks import record_audit_event
        record_audit_event.delay(event)


def get_audit_sink() -> AuditSink:
    if settings.AUDIT_SINK == "log":
        return LoggingAuditSink()
    return CeleryAuditSink()
