"""
Fixtures compartidos: base de datos SQLite en memoria, cliente de la API,
sink de auditoría en memoria y tokens de prueba.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AUDIT_SINK", "log")
os.environ.setdefault("RATE_SYNC_ENABLED", "false")

import jwt
import pytest
from uuid import uuid4
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from servistech.main import app
from servistech.core.config import settings
from servistech.database.database import Base, get_db
from servistech.modules.audit.sink import AuditSink, get_audit_sink
from servistech.modules.rates.cache import RateCache


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingAuditSink(AuditSink):
    """Guarda los eventos en memoria para inspeccionarlos en los tests."""

    def __init__(self):
        self.events = []

    def _emit(self, event):
        self.events.append(event)

    def actions(self):
        return [e["action"] for e in self.events]


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def client(db_session, audit_sink):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink
    app.state.rate_cache = RateCache()
    app.state.rate_providers = {}

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    del app.state.rate_providers


@pytest.fixture
def store_id():
    return uuid4()


def make_token(role, user_id=None, store_id=None):
    payload = {"sub": str(user_id or uuid4()), "role": role}
    if store_id is not None:
        payload["store_id"] = str(store_id)
    return jwt.encode(payload, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)


@pytest.fixture
def auth_headers():
    """Headers Authorization para un rol dado."""
    def _headers(role, user_id=None, store_id=None):
        return {"Authorization": f"Bearer {make_token(role, user_id, store_id)}"}
    return _headers
