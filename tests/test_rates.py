"""
Tests para el módulo de Tasas de Cambio

Cubren:
- Proveedores BCV y Binance con transporte HTTP simulado
- Caché con TTL
- Store append-only y marcado de respaldo
- Sincronización: fallos, respaldo, carga manual y auditoría
- Endpoints públicos y de administración
"""

import threading

import pytest
import httpx
from decimal import Decimal
from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy.orm import sessionmaker

from servistech.common.exceptions import RateSourceError, InvalidRateValueError
from servistech.modules.audit.models import AuditAction
from servistech.modules.rates.cache import RateCache
from servistech.modules.rates.converter import CurrencyConverter, to_local, to_usd
from servistech.modules.rates.models import RateKind, RateProvenance
from servistech.modules.rates.providers import (
    BCVRateProvider, BinanceRateProvider, FetchedRate, parse_localized_number
)
from servistech.modules.rates.schemas import ConversionDirection, RateQuote
from servistech.modules.rates.service import RateService, RateSynchronizer, new_sync_locks
from servistech.modules.rates.store import RateStore


BCV_HTML = """
<html><body>
  <div id="euro"><strong> 39,87120000 </strong></div>
  <div id="dolar"><div class="field-content"><strong> 36,50210000 </strong></div></div>
</body></html>
"""


class StaticProvider:
    """Proveedor de prueba: devuelve un valor fijo o falla siempre."""

    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error:
            raise RateSourceError(self.error)
        return FetchedRate(value=Decimal(self.value), source="TEST")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ===== FIXTURES =====

@pytest.fixture
def cache():
    return RateCache()


@pytest.fixture
def make_synchronizer(db_session, cache, audit_sink):
    def _make(providers):
        return RateSynchronizer(db_session, cache, providers=providers, audit=audit_sink)
    return _make


# ===== PROVEEDORES =====

class TestLocalizedNumber:
    """Tests para la normalización de números con formato local"""

    def test_comma_decimal(self):
        assert parse_localized_number(" 36,50 ") == Decimal("36.50")

    def test_thousands_separator(self):
        assert parse_localized_number("1.234,56") == Decimal("1234.56")

    def test_not_a_number(self):
        with pytest.raises(RateSourceError):
            parse_localized_number("N/D")

    def test_zero_is_rejected(self):
        with pytest.raises(RateSourceError):
            parse_localized_number("0,00")


class TestBCVRateProvider:
    """Tests para el scraping de la tasa oficial"""

    def test_parses_dolar_element(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=BCV_HTML))
        fetched = BCVRateProvider(url="https://bcv.test/", transport=transport).fetch()

        assert fetched.value == Decimal("36.50210000")
        assert fetched.source == "BCV"

    def test_missing_element(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html></html>"))
        with pytest.raises(RateSourceError):
            BCVRateProvider(url="https://bcv.test/", transport=transport).fetch()

    def test_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(RateSourceError):
            BCVRateProvider(url="https://bcv.test/", transport=transport).fetch()

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider = BCVRateProvider(url="https://bcv.test/", transport=httpx.MockTransport(handler), timeout=0.1)
        with pytest.raises(RateSourceError) as exc:
            provider.fetch()
        assert "timeout" in exc.value.message


class TestBinanceRateProvider:
    """Tests para la estimación de la tasa paralela"""

    def test_parallel_formula(self):
        seen = {}

        def handler(request):
            seen["symbol"] = request.url.params.get("symbol")
            return httpx.Response(200, json={"symbol": "USDTUSD", "price": "1.0010"})

        provider = BinanceRateProvider(
            official_rate=lambda: Decimal("36.50"),
            url="https://binance.test/ticker",
            symbol="USDTUSD",
            differential=Decimal("1.15"),
            transport=httpx.MockTransport(handler)
        )
        fetched = provider.fetch()

        assert seen["symbol"] == "USDTUSD"
        assert fetched.value == Decimal("36.50") * Decimal("1.15") * Decimal("1.0010")
        assert fetched.source_price == Decimal("1.0010")
        assert fetched.source == "BINANCE"

    def test_response_without_price(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"code": -1121}))
        provider = BinanceRateProvider(
            official_rate=lambda: Decimal("36.50"), url="https://binance.test/ticker", transport=transport
        )
        with pytest.raises(RateSourceError):
            provider.fetch()


# ===== CACHÉ =====

class TestRateCache:
    """Tests para el caché en memoria"""

    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = RateCache(ttl_seconds=3600, clock=clock)
        quote = RateQuote(rate_kind=RateKind.OFFICIAL, value=Decimal("36.50"))
        cache.set(RateKind.OFFICIAL, quote)

        clock.now += 3599
        assert cache.get(RateKind.OFFICIAL) == quote

        clock.now += 1
        assert cache.get(RateKind.OFFICIAL) is None
        assert len(cache) == 0

    def test_invalidate_only_one_kind(self):
        cache = RateCache()
        cache.set(RateKind.OFFICIAL, RateQuote(rate_kind=RateKind.OFFICIAL, value=Decimal("36.50")))
        cache.set(RateKind.PARALLEL, RateQuote(rate_kind=RateKind.PARALLEL, value=Decimal("42.00")))

        cache.invalidate(RateKind.OFFICIAL)

        assert cache.get(RateKind.OFFICIAL) is None
        assert cache.get(RateKind.PARALLEL) is not None


# ===== STORE =====

class TestRateStore:
    """Tests para la persistencia append-only"""

    def test_latest_breaks_ties_by_id(self, db_session):
        store = RateStore(db_session)
        observed = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)
        store.append(RateKind.OFFICIAL, Decimal("36.10"), RateProvenance.AUTOMATIC, observed_at=observed)
        second = store.append(RateKind.OFFICIAL, Decimal("36.20"), RateProvenance.MANUAL, observed_at=observed)

        assert store.latest(RateKind.OFFICIAL).id == second.id

    def test_kinds_are_independent(self, db_session):
        store = RateStore(db_session)
        store.append(RateKind.OFFICIAL, Decimal("36.10"), RateProvenance.AUTOMATIC)

        assert store.latest(RateKind.PARALLEL) is None

    def test_mark_backup_only_once(self, db_session):
        store = RateStore(db_session)
        store.append(RateKind.OFFICIAL, Decimal("36.10"), RateProvenance.AUTOMATIC)

        assert store.mark_latest_as_backup(RateKind.OFFICIAL) is True
        assert store.mark_latest_as_backup(RateKind.OFFICIAL) is False
        assert store.latest(RateKind.OFFICIAL).provenance == RateProvenance.BACKUP

    def test_mark_backup_without_observations(self, db_session):
        assert RateStore(db_session).mark_latest_as_backup(RateKind.OFFICIAL) is False

    def test_mark_backup_refuses_stale_latest(self, db_session, monkeypatch):
        """Una observación nueva llega entre la lectura y el UPDATE: no se marca nada"""
        store = RateStore(db_session)
        store.append(
            RateKind.OFFICIAL, Decimal("36.10"), RateProvenance.AUTOMATIC,
            observed_at=datetime(2026, 1, 10, 8, 0, tzinfo=timezone.utc)
        )
        stale = store.latest(RateKind.OFFICIAL)
        store.append(
            RateKind.OFFICIAL, Decimal("36.20"), RateProvenance.AUTOMATIC,
            observed_at=datetime(2026, 1, 11, 8, 0, tzinfo=timezone.utc)
        )
        monkeypatch.setattr(store, "latest", lambda kind: stale)

        assert store.mark_latest_as_backup(RateKind.OFFICIAL) is False

        monkeypatch.undo()
        db_session.expire_all()
        provenances = [r.provenance for r in store.history(RateKind.OFFICIAL)]
        assert provenances == [RateProvenance.AUTOMATIC, RateProvenance.AUTOMATIC]

    def test_history_is_newest_first(self, db_session):
        store = RateStore(db_session)
        for i, value in enumerate(["36.10", "36.20", "36.30"]):
            store.append(
                RateKind.OFFICIAL, Decimal(value), RateProvenance.AUTOMATIC,
                observed_at=datetime(2026, 1, 10 + i, 8, 0, tzinfo=timezone.utc)
            )

        values = [r.value for r in store.history(RateKind.OFFICIAL, limit=2)]
        assert values == [Decimal("36.30"), Decimal("36.20")]


# ===== SINCRONIZACIÓN =====

class TestRateSynchronizer:
    """Tests para la sincronización con las fuentes"""

    def test_successful_sync_clears_cache(self, db_session, cache, make_synchronizer):
        cache.set(RateKind.PARALLEL, RateQuote(rate_kind=RateKind.PARALLEL, value=Decimal("40")))
        synchronizer = make_synchronizer({RateKind.OFFICIAL: StaticProvider("36.50")})

        result = synchronizer.sync(RateKind.OFFICIAL)

        assert result.success is True
        assert result.observation.provenance == RateProvenance.AUTOMATIC
        assert len(cache) == 0

    def test_failure_without_history_returns_default(self, db_session, cache, make_synchronizer):
        synchronizer = make_synchronizer({RateKind.OFFICIAL: StaticProvider(error="BCV caído")})

        result = synchronizer.sync(RateKind.OFFICIAL)

        assert result.success is False
        assert result.failure_reason == "BCV caído"
        assert result.observation is None
        assert RateService(db_session, cache).get_current(RateKind.OFFICIAL) == Decimal("64.85")

    def test_repeated_failures_keep_last_known_value(self, db_session, cache, make_synchronizer):
        """Tres fallos seguidos: la tasa vigente sigue siendo la anterior, marcada como respaldo"""
        make_synchronizer({RateKind.OFFICIAL: StaticProvider("36.50")}).sync(RateKind.OFFICIAL)
        rates = RateService(db_session, cache)
        assert rates.get_current(RateKind.OFFICIAL) == Decimal("36.50")

        failing = make_synchronizer({RateKind.OFFICIAL: StaticProvider(error="timeout")})
        results = [failing.sync(RateKind.OFFICIAL) for _ in range(3)]

        assert [r.backup_marked for r in results] == [True, False, False]
        assert all(r.success is False for r in results)

        quote = rates.get_quote(RateKind.OFFICIAL)
        assert quote.value == Decimal("36.50")
        assert quote.is_backup is True
        assert quote.provenance == RateProvenance.BACKUP
        assert len(RateStore(db_session).history(RateKind.OFFICIAL)) == 1

    def test_concurrent_failures_mark_backup_once(self, db_session, cache, audit_sink):
        """Dos sincronizaciones simultáneas que fallan comparten el lock: un solo respaldo"""
        RateStore(db_session).append(RateKind.OFFICIAL, Decimal("36.50"), RateProvenance.AUTOMATIC)
        make_session = sessionmaker(autocommit=False, autoflush=False, bind=db_session.get_bind())
        locks = new_sync_locks()
        provider = StaticProvider(error="BCV caído")
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def worker():
            session = make_session()
            try:
                synchronizer = RateSynchronizer(
                    session, cache, providers={RateKind.OFFICIAL: provider}, locks=locks, audit=audit_sink
                )
                barrier.wait(timeout=5)
                results.append(synchronizer.sync(RateKind.OFFICIAL))
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert provider.calls == 2
        assert sorted(r.backup_marked for r in results) == [False, True]
        assert all(r.success is False for r in results)
        db_session.expire_all()
        assert RateStore(db_session).latest(RateKind.OFFICIAL).provenance == RateProvenance.BACKUP

    def test_missing_provider_is_a_failure(self, make_synchronizer):
        result = make_synchronizer({}).sync(RateKind.PARALLEL)

        assert result.success is False
        assert "parallel" in result.failure_reason

    def test_manual_override_is_audited(self, db_session, audit_sink, make_synchronizer):
        synchronizer = make_synchronizer({RateKind.OFFICIAL: StaticProvider("36.50")})
        synchronizer.sync(RateKind.OFFICIAL)
        admin_id = uuid4()

        result = synchronizer.sync(RateKind.OFFICIAL, manual_value=Decimal("37.00"), user_id=admin_id)

        assert result.success is True
        assert result.observation.provenance == RateProvenance.MANUAL
        assert result.observation.updated_by == admin_id
        assert audit_sink.actions() == [AuditAction.RATE_MANUAL.value]
        assert audit_sink.events[0]["old_value"] is not None
        assert audit_sink.events[0]["user_id"] == str(admin_id)

    @pytest.mark.parametrize("value", [Decimal("0"), Decimal("-5"), Decimal("NaN")])
    def test_manual_override_rejects_invalid_values(self, make_synchronizer, audit_sink, value):
        with pytest.raises(InvalidRateValueError):
            make_synchronizer({}).sync(RateKind.OFFICIAL, manual_value=value, user_id=uuid4())
        assert audit_sink.events == []

    def test_parallel_uses_fresh_official_rate(self, db_session, make_synchronizer):
        make_synchronizer({RateKind.OFFICIAL: StaticProvider("40.00")}).sync(RateKind.OFFICIAL)
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"price": "1.00"}))

        synchronizer = make_synchronizer({})
        synchronizer.providers = {
            RateKind.PARALLEL: BinanceRateProvider(
                official_rate=lambda: synchronizer.rates.get_current(RateKind.OFFICIAL, use_cache=False),
                url="https://binance.test/ticker",
                differential=Decimal("1.15"),
                transport=transport
            )
        }
        result = synchronizer.sync(RateKind.PARALLEL)

        assert result.success is True
        assert result.observation.value == Decimal("46.000000")
        assert result.observation.source_price == Decimal("1.00")


class TestRateService:
    """Tests para la lectura de la tasa vigente"""

    def test_default_is_not_cached(self, db_session, cache):
        quote = RateService(db_session, cache).get_quote(RateKind.PARALLEL)

        assert quote.is_default is True
        assert quote.value == Decimal("74.58")
        assert len(cache) == 0

    def test_stored_value_is_cached(self, db_session, cache):
        RateStore(db_session).append(RateKind.OFFICIAL, Decimal("36.50"), RateProvenance.AUTOMATIC)
        service = RateService(db_session, cache)

        service.get_quote(RateKind.OFFICIAL)

        assert cache.get(RateKind.OFFICIAL).value == Decimal("36.50")


# ===== CONVERSIÓN =====

class TestCurrencyConverter:
    """Tests para la conversión USD <-> VES"""

    def test_pure_functions_do_not_round(self):
        assert to_local(Decimal("10.005"), Decimal("36.5")) == Decimal("365.1825")
        assert to_usd(Decimal("73"), Decimal("36.5")) == Decimal("2")

    def test_to_usd_rejects_zero_rate(self):
        with pytest.raises(ValueError):
            to_usd(Decimal("10"), Decimal("0"))

    def test_round_trip(self):
        rate = Decimal("36.5021")
        amount = Decimal("123.45")
        assert to_usd(to_local(amount, rate), rate).quantize(Decimal("0.01")) == amount

    def test_convert_quantizes_and_flags_backup(self):
        quote = RateQuote(rate_kind=RateKind.OFFICIAL, value=Decimal("36.5021"), is_backup=True)
        converter = CurrencyConverter(lambda kind: quote)

        result = converter.convert(Decimal("10"), ConversionDirection.TO_LOCAL)

        assert result.converted == Decimal("365.02")
        assert result.is_backup is True


# ===== API =====

class TestRatesAPI:
    """Tests de integración de los endpoints de tasas"""

    def test_public_current_rate_without_token(self, client):
        response = client.get("/api/rates/current")

        assert response.status_code == 200
        data = response.json()
        assert data["rate_kind"] == "official"
        assert Decimal(data["value"]) == Decimal("64.85")
        assert data["is_default"] is True

    def test_manual_rate_requires_super_admin(self, client, auth_headers, store_id):
        response = client.post(
            "/api/rates/official/manual",
            json={"value": "37.10"},
            headers=auth_headers("GERENTE", store_id=store_id)
        )
        assert response.status_code == 403

    def test_manual_rate_updates_current(self, client, auth_headers, audit_sink):
        response = client.post(
            "/api/rates/official/manual",
            json={"value": "37.10"},
            headers=auth_headers("SUPER_ADMIN")
        )

        assert response.status_code == 201
        assert response.json()["observation"]["provenance"] == "manual"
        assert Decimal(client.get("/api/rates/current").json()["value"]) == Decimal("37.10")
        assert AuditAction.RATE_MANUAL.value in audit_sink.actions()

    def test_manual_rate_rejects_zero(self, client, auth_headers):
        response = client.post(
            "/api/rates/official/manual",
            json={"value": "0"},
            headers=auth_headers("SUPER_ADMIN")
        )
        assert response.status_code == 422

    def test_forced_sync_failure_marks_backup(self, client, auth_headers):
        headers = auth_headers("SUPER_ADMIN")
        client.post("/api/rates/official/manual", json={"value": "36.50"}, headers=headers)

        response = client.post("/api/rates/official/sync", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["backup_marked"] is True
        current = client.get("/api/rates/current").json()
        assert Decimal(current["value"]) == Decimal("36.50")
        assert current["is_backup"] is True

    def test_sync_all(self, client, auth_headers):
        client.app.state.rate_providers = {
            RateKind.OFFICIAL: StaticProvider("36.50"),
            RateKind.PARALLEL: StaticProvider("42.00"),
        }
        response = client.post("/api/rates/sync", headers=auth_headers("SUPER_ADMIN"))

        assert response.status_code == 200
        data = response.json()
        assert data["official"]["success"] is True
        assert data["parallel"]["success"] is True

    def test_history_and_convert(self, client, auth_headers, store_id):
        admin = auth_headers("SUPER_ADMIN")
        client.post("/api/rates/official/manual", json={"value": "36.00"}, headers=admin)
        client.post("/api/rates/official/manual", json={"value": "40.00"}, headers=admin)
        headers = auth_headers("ANFITRION", store_id=store_id)

        history = client.get("/api/rates/official/history?limit=5", headers=headers).json()
        assert history["total"] == 2
        assert Decimal(history["rates"][0]["value"]) == Decimal("40.00")

        converted = client.post(
            "/api/rates/convert",
            json={"amount": "800", "direction": "to_usd"},
            headers=headers
        ).json()
        assert Decimal(converted["converted"]) == Decimal("20.00")


class TestScheduledSync:
    """Tests para la tarea periódica de sincronización"""

    def test_skipped_when_disabled(self, monkeypatch):
        from servistech.core.config import settings
        from servistech.modules.rates import tasks

        monkeypatch.setattr(settings, "RATE_SYNC_ENABLED", False)
        assert tasks.sync_exchange_rates() == {"status": "skipped"}
