from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit
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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    get_settings.cache_clear()


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    company = Company(business_name="Correlation Co")
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def client(db_session: Session, company_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_actor(request: Request) -> ActorContext:
        return ActorContext(
            user_id="user-1",
            roles=["admin"],
            company_id=company_id,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/divisions/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/divisions/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.headers.get("x-request-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    response = client.post("/api/divisions", json={"name": "Audited"}, headers={"X-Correlation-Id": "corr-audit-1"})
    assert response.status_code == 201

    division_audits = audit.entries_for("division", response.json()["id"])
    assert division_audits
    assert division_audits[-1]["correlation_id"] == "corr-audit-1"


def test_reassignment_audit_carries_correlation_id(
    client: TestClient,
    db_session: Session,
    company_id: uuid.UUID,
) -> None:
    target = client.post("/api/divisions", json={"name": "Target"}).json()
    contact = CRMContact(company_id=company_id, first_name="Ri", last_name="Cho")
    db_session.add(contact)
    db_session.commit()

    response = client.post(
        "/api/divisions/reassign",
        json={"entity_type": "contact", "entity_id": str(contact.id), "new_division_id": target["id"]},
        headers={"X-Correlation-Id": "corr-reassign-1"},
    )
    assert response.status_code == 200

    entries = audit.entries_for("crm.contact", str(contact.id))
    assert entries
    assert entries[-1]["correlation_id"] == "corr-reassign-1"
    assert entries[-1]["action"] == "reassign_division"
