from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Company, CRMContact
from app.divisions.api import ActorContext, get_current_actor
from app.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    company = Company(business_name="Metrics Co")
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def client(db_session: Session, company_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_actor() -> ActorContext:
        return ActorContext(user_id="metrics-user", roles=["admin"], company_id=company_id, correlation_id="metrics-corr-1")

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["system.metrics.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_actor
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_division_metrics(
    client: TestClient,
    db_session: Session,
    company_id: uuid.UUID,
) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    root = client.post("/api/divisions", json={"name": "Metrics Root"})
    assert root.status_code == 201
    branch = client.post("/api/divisions", json={"name": "Metrics Branch"})
    assert branch.status_code == 201
    moved = client.put(f"/api/divisions/{branch.json()['id']}", json={"parent_division_id": root.json()["id"]})
    assert moved.status_code == 200

    contact = CRMContact(company_id=company_id, first_name="Mo", last_name="Tran")
    db_session.add(contact)
    db_session.commit()
    reassigned = client.post(
        "/api/divisions/reassign",
        json={"entity_type": "contact", "entity_id": str(contact.id), "new_division_id": root.json()["id"]},
    )
    assert reassigned.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "division_closure_rows_written_total" in body
    assert "division_reparent_duration_seconds" in body
    assert "division_entity_reassignments_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/divisions/{id}"' in body
    assert 'entity_type="contact",outcome="success"' in body


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics").status_code == 404


def test_metrics_endpoint_requires_metrics_role(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="viewer", roles=["user"])

    assert client.get("/metrics").status_code == 403
