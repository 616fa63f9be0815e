"""
Tests para el módulo de Comisiones

Cubren:
- Esquemas de técnico (porcentaje) y encargada (fijo + accesorios)
- Contra-cargos: neto nunca negativo, paso a DEBITADA y reversión
- Pago en lote
- Endpoints con aislamiento por sede y acceso a datos propios
"""

import pytest
from pydantic import ValidationError
from decimal import Decimal
from datetime import datetime, timezone
from uuid import uuid4

from servistech.common.exceptions import BusinessRuleViolation
from servistech.modules.audit.models import AuditAction
from servistech.modules.commissions.engine import CommissionEngine
from servistech.modules.commissions.models import CommissionStatus, DebitReason
from servistech.modules.commissions.schemas import DebitCreate, OrderSnapshot
from servistech.modules.commissions.service import CommissionService


def technician_order(gross_profit="200.00", rate="35", store_id=None, technician_id=None):
    return OrderSnapshot(
        id=uuid4(),
        store_id=store_id,
        gross_profit=Decimal(gross_profit) if gross_profit is not None else None,
        technician={"id": technician_id or uuid4(), "role": "TECNICO", "name": "Luis", "commission_rate": rate}
    )


def manager_order(store_id=None, gross_profit="120.00"):
    return OrderSnapshot(
        id=uuid4(),
        store_id=store_id,
        gross_profit=Decimal(gross_profit) if gross_profit is not None else None,
        technician={
            "id": uuid4(), "role": "ENCARGADA", "name": "María",
            "flat_rate_per_unit": "1", "accessory_rate": "10"
        },
        invoice={"items": [
            {"type": "service", "total": "100.00"},
            {"type": "accessory", "total": "30.00"},
            {"type": "accessory", "total": "20.00"},
        ]}
    )


@pytest.fixture
def engine():
    return CommissionEngine()


# ===== MOTOR =====

class TestCommissionCalculation:
    """Tests para el cálculo de comisiones"""

    def test_technician_percentage(self, engine):
        commission = engine.compute_for_order(technician_order())

        assert commission.commission_amount == Decimal("70.00")
        assert commission.flat_rate_amount == Decimal("0.00")
        assert commission.net_amount == Decimal("70.00")
        assert commission.status == CommissionStatus.PENDIENTE

    def test_manager_flat_rate_plus_accessories(self, engine):
        commission = engine.compute_for_order(manager_order())

        assert commission.commission_amount == Decimal("5.00")
        assert commission.flat_rate_amount == Decimal("1.00")
        assert commission.net_amount == Decimal("6.00")

    def test_period_from_calculation_date(self, engine):
        now = datetime(2026, 3, 31, 23, 0, tzinfo=timezone.utc)
        commission = engine.compute_for_order(technician_order(), now=now)

        assert (commission.period_month, commission.period_year) == (3, 2026)

    def test_no_commission_without_profit(self, engine):
        assert engine.compute_for_order(technician_order(gross_profit=None)) is None

    @pytest.mark.parametrize("gross_profit", ["0", "-15.00"])
    def test_technician_without_profit_earns_zero(self, engine, gross_profit):
        commission = engine.compute_for_order(technician_order(gross_profit=gross_profit))

        assert commission.commission_amount == Decimal("0.00")
        assert commission.net_amount == Decimal("0.00")

    @pytest.mark.parametrize("gross_profit", [None, "0"])
    def test_manager_paid_regardless_of_profit(self, engine, gross_profit):
        """Garantías sin utilidad: la encargada cobra igual fijo + accesorios"""
        commission = engine.compute_for_order(manager_order(gross_profit=gross_profit))

        assert commission.flat_rate_amount == Decimal("1.00")
        assert commission.commission_amount == Decimal("5.00")
        assert commission.net_amount == Decimal("6.00")
        assert commission.gross_profit == Decimal("0.00")

    def test_no_commission_without_technician(self, engine):
        assert engine.compute_for_order(OrderSnapshot(id=uuid4(), gross_profit=Decimal("50"))) is None

    def test_role_without_scheme(self, engine):
        order = OrderSnapshot(
            id=uuid4(), gross_profit=Decimal("50"), technician={"id": uuid4(), "role": "MENSAJERO"}
        )
        assert engine.compute_for_order(order) is None


class TestDebits:
    """Tests para contra-cargos"""

    @pytest.mark.parametrize("amount", ["0.004", "10.001"])
    def test_debit_amount_limited_to_cents(self, amount):
        with pytest.raises(ValidationError):
            DebitCreate(commission_id=uuid4(), reason=DebitReason.OTRO, amount=Decimal(amount))

    def test_debit_reduces_net(self, engine):
        commission = engine.compute_for_order(technician_order())
        engine.apply_debit(commission, DebitReason.ERROR_REPARACION, Decimal("20.00"))

        assert commission.debits_total == Decimal("20.00")
        assert commission.net_amount == Decimal("50.00")
        assert commission.status == CommissionStatus.PENDIENTE
        assert commission.needs_review is False

    def test_debit_never_leaves_negative_net(self, engine):
        commission = engine.compute_for_order(technician_order())
        engine.apply_debit(commission, DebitReason.PERDIDA_EQUIPO, Decimal("50.00"), photos=["a.jpg"])
        engine.apply_debit(commission, DebitReason.PERDIDA_EQUIPO, Decimal("50.00"), photos=["b.jpg"])

        assert commission.net_amount == Decimal("0.00")
        assert commission.debits_total == Decimal("100.00")
        assert commission.status == CommissionStatus.DEBITADA
        assert commission.needs_review is True

    def test_evidence_flag(self, engine):
        commission = engine.compute_for_order(technician_order())
        damage = engine.apply_debit(commission, DebitReason.DANO_ACCIDENTAL, Decimal("5"))
        other = engine.apply_debit(commission, DebitReason.OTRO, Decimal("5"))

        assert damage.evidence_required is True
        assert other.evidence_required is False

    def test_non_positive_debit(self, engine):
        commission = engine.compute_for_order(technician_order())
        with pytest.raises(BusinessRuleViolation):
            engine.apply_debit(commission, DebitReason.OTRO, Decimal("0"))

    def test_debit_on_paid_commission(self, engine):
        """Una comisión PAGADA pasa a DEBITADA si el contra-cargo la deja negativa"""
        commission = engine.compute_for_order(technician_order())
        engine.batch_pay([commission], paid_by=uuid4())
        debit = engine.apply_debit(commission, DebitReason.REPUESTO_ROTO, Decimal("90.00"), photos=["x.jpg"])

        assert commission.status == CommissionStatus.DEBITADA

        engine.reverse_debit(commission, debit, reversed_by=uuid4(), note="Repuesto defectuoso de fábrica")

        assert commission.status == CommissionStatus.PAGADA
        assert commission.net_amount == Decimal("70.00")
        assert commission.needs_review is False

    def test_reversal_restores_pending(self, engine):
        commission = engine.compute_for_order(technician_order())
        debit = engine.apply_debit(commission, DebitReason.OTRO, Decimal("100.00"))
        engine.reverse_debit(commission, debit, reversed_by=uuid4(), note="Cargado por error")

        assert commission.status == CommissionStatus.PENDIENTE
        assert debit.is_reversed is True
        assert len(commission.debits) == 1

    def test_reverse_twice(self, engine):
        commission = engine.compute_for_order(technician_order())
        debit = engine.apply_debit(commission, DebitReason.OTRO, Decimal("10.00"))
        engine.reverse_debit(commission, debit, reversed_by=uuid4(), note="Cargado por error")

        with pytest.raises(BusinessRuleViolation):
            engine.reverse_debit(commission, debit, reversed_by=uuid4(), note="Otra vez")


class TestBatchPay:
    """Tests para el pago en lote"""

    def test_only_pending_are_paid(self, engine):
        pending = engine.compute_for_order(technician_order())
        debited = engine.compute_for_order(technician_order())
        engine.apply_debit(debited, DebitReason.OTRO, Decimal("100.00"))
        payer = uuid4()

        count = engine.batch_pay([pending, debited], paid_by=payer)

        assert count == 1
        assert pending.status == CommissionStatus.PAGADA
        assert pending.paid_by == payer
        assert debited.status == CommissionStatus.DEBITADA


# ===== SERVICIO =====

class TestCommissionService:
    """Tests para la persistencia de comisiones"""

    def test_compute_is_idempotent_per_order(self, db_session):
        service = CommissionService(db_session)
        order = technician_order()

        first = service.compute_for_order(order)
        second = service.compute_for_order(order)

        assert first.created is True
        assert second.created is False
        assert second.commission.id == first.commission.id

    def test_compute_never_raises(self, db_session):
        class BrokenEngine(CommissionEngine):
            def compute_for_order(self, order, now=None):
                raise RuntimeError("fallo inesperado")

        result = CommissionService(db_session, engine=BrokenEngine()).compute_for_order(technician_order())

        assert result.created is False
        assert "fallo inesperado" in result.reason


# ===== API =====

class TestCommissionsAPI:
    """Tests de integración de los endpoints de comisiones"""

    def _compute(self, client, headers, order):
        return client.post("/api/commissions/compute", json=order.model_dump(mode="json"), headers=headers)

    def test_compute_and_list(self, client, auth_headers, store_id):
        manager = auth_headers("GERENTE", store_id=store_id)
        response = self._compute(client, manager, technician_order(store_id=store_id))

        assert response.status_code == 200
        assert response.json()["created"] is True
        assert Decimal(response.json()["commission"]["net_amount"]) == Decimal("70.00")

        listed = client.get("/api/commissions/", headers=manager).json()
        assert listed["total"] == 1

    def test_technician_only_sees_own(self, client, auth_headers, store_id):
        manager = auth_headers("GERENTE", store_id=store_id)
        tech_id = uuid4()
        self._compute(client, manager, technician_order(store_id=store_id, technician_id=tech_id))
        self._compute(client, manager, technician_order(store_id=store_id))

        own = auth_headers("TECNICO", user_id=tech_id, store_id=store_id)
        assert client.get("/api/commissions/", headers=own).json()["total"] == 1
        assert client.get(f"/api/commissions/summary/{tech_id}", headers=own).status_code == 200
        assert client.get(f"/api/commissions/summary/{uuid4()}", headers=own).status_code == 403

    def test_debit_and_reverse(self, client, auth_headers, store_id, audit_sink):
        manager = auth_headers("GERENTE", store_id=store_id)
        commission = self._compute(client, manager, technician_order(store_id=store_id)).json()["commission"]

        debit = client.post(
            "/api/commissions/debits",
            json={
                "commission_id": commission["id"],
                "reason": "DANO_ACCIDENTAL",
                "amount": "100.00",
                "description": "Pantalla rota al desarmar",
                "photos": ["evidencia/1.jpg"]
            },
            headers=manager
        )
        assert debit.status_code == 201
        data = debit.json()
        assert data["commission"]["status"] == "DEBITADA"
        assert Decimal(data["commission"]["net_amount"]) == Decimal("0.00")
        assert data["commission"]["needs_review"] is True
        assert data["debit"]["evidence_required"] is True

        reversed_ = client.post(
            f"/api/commissions/debits/{data['debit']['id']}/reverse",
            json={"note": "El daño era previo"},
            headers=manager
        )
        assert reversed_.status_code == 200
        assert reversed_.json()["commission"]["status"] == "PENDIENTE"
        assert reversed_.json()["debit"]["reversed_at"] is not None

        again = client.post(
            f"/api/commissions/debits/{data['debit']['id']}/reverse",
            json={"note": "El daño era previo"},
            headers=manager
        )
        assert again.status_code == 409
        assert audit_sink.actions().count(AuditAction.DEBIT_APPLY.value) == 1
        assert audit_sink.actions().count(AuditAction.DEBIT_REVERSE.value) == 1

    def test_debit_on_other_store_commission(self, client, auth_headers, store_id):
        manager = auth_headers("GERENTE", store_id=store_id)
        commission = self._compute(client, manager, technician_order(store_id=store_id)).json()["commission"]

        response = client.post(
            "/api/commissions/debits",
            json={"commission_id": commission["id"], "reason": "OTRO", "amount": "5.00"},
            headers=auth_headers("GERENTE", store_id=uuid4())
        )
        assert response.status_code == 404

    def test_batch_pay_and_payroll(self, client, auth_headers, store_id, audit_sink):
        manager = auth_headers("GERENTE", store_id=store_id)
        first = self._compute(client, manager, technician_order(store_id=store_id)).json()["commission"]
        second = self._compute(client, manager, manager_order(store_id=store_id)).json()["commission"]

        paid = client.post(
            "/api/commissions/pay",
            json={"commission_ids": [first["id"], second["id"]]},
            headers=manager
        ).json()
        assert paid["count"] == 2

        repeat = client.post("/api/commissions/pay", json={"commission_ids": [first["id"]]}, headers=manager).json()
        assert repeat["count"] == 0
        assert AuditAction.COMMISSION_PAY.value in audit_sink.actions()

        report = client.get("/api/commissions/payroll-report", headers=manager).json()
        assert report["total_orders"] == 2
        assert Decimal(report["total_payable"]) == Decimal("76.00")

    def test_technician_debits(self, client, auth_headers, store_id):
        manager = auth_headers("GERENTE", store_id=store_id)
        tech_id = uuid4()
        commission = self._compute(
            client, manager, technician_order(store_id=store_id, technician_id=tech_id)
        ).json()["commission"]
        client.post(
            "/api/commissions/debits",
            json={"commission_id": commission["id"], "reason": "OTRO", "amount": "5.00"},
            headers=manager
        )

        own = auth_headers("TECNICO", user_id=tech_id, store_id=store_id)
        debits = client.get(f"/api/commissions/debits/{tech_id}", headers=own).json()
        assert len(debits) == 1
        assert Decimal(debits[0]["amount"]) == Decimal("5.00")
