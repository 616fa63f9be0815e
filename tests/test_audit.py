"""
Tests para la auditoría y la aplicación

Cubren:
- El sink nunca propaga errores
- Persistencia y consulta de eventos
- Middleware de sede y endpoints base
"""

from uuid import uuid4
from decimal import Decimal

from servistech.modules.audit.models import AuditAction
from servistech.modules.audit.service import AuditService
from servistech.modules.audit.sink import AuditSink


class BrokenSink(AuditSink):
    def _emit(self, event):
        raise RuntimeError("broker caído")


class TestAuditSink:
    """Tests para el despacho de eventos"""

    def test_errors_are_swallowed(self):
        BrokenSink().record(AuditAction.RATE_MANUAL, "rate", 1, new_value={"value": Decimal("36.50")})

    def test_event_is_json_ready(self, audit_sink):
        user_id = uuid4()
        audit_sink.record(
            AuditAction.DEBIT_APPLY, "debit", uuid4(),
            old_value={"net_amount": Decimal("70.00")}, user_id=user_id
        )

        event = audit_sink.events[0]
        assert event["action"] == "DEBIT_APPLY"
        assert event["user_id"] == str(user_id)
        assert isinstance(event["entity_id"], str)


class TestAuditAPI:
    """Tests de integración de la bitácora"""

    def test_saved_events_are_listed(self, client, db_session, auth_headers):
        service = AuditService(db_session)
        service.save_event({
            "action": "RATE_MANUAL", "entity_type": "rate", "entity_id": "1",
            "old_value": None, "new_value": {"value": 36.5}, "user_id": str(uuid4()), "store_id": None
        })
        service.save_event({
            "action": "COMMISSION_PAY", "entity_type": "commission", "entity_id": "batch-payment",
            "new_value": {"count": 2}, "user_id": None, "store_id": None
        })

        response = client.get("/api/audit/?action=RATE_MANUAL", headers=auth_headers("SUPER_ADMIN"))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["logs"][0]["entity_type"] == "rate"

    def test_audit_requires_manager(self, client, auth_headers):
        response = client.get("/api/audit/", headers=auth_headers("TECNICO", store_id=uuid4()))
        assert response.status_code == 403


class TestApplication:
    """Tests para middleware y endpoints base"""

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_invalid_store_header(self, client):
        response = client.get("/api/rates/current", headers={"X-Store-ID": "no-es-uuid"})
        assert response.status_code == 400

    def test_store_header_is_echoed(self, client):
        store_id = str(uuid4())
        response = client.get("/api/rates/current", headers={"X-Store-ID": store_id})
        assert response.headers["X-Store-ID"] == store_id

    def test_invalid_token(self, client):
        response = client.get(
            "/api/rates/official/history", headers={"Authorization": "Bearer token-invalido"}
        )
        assert response.status_code == 401
