from __future__ import annotations

import os
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Company, CRMContact
from app.divisions.api import ActorContext, get_current_actor
from app.main import app
from app.otel import setup_inmemory_otel


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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    company = Company(business_name="Tracing Co")
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("divisions-api")
    exporter.clear()
    return exporter


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


def test_request_span_contains_correlation_and_company(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    company_id: uuid.UUID,
) -> None:
    response = client.post(
        "/api/divisions",
        json={"name": "Traced"},
        headers={"X-Correlation-Id": "otel-corr-1", "X-Company-Id": str(company_id)},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)
    assert any(span.attributes.get("company_id") == str(company_id) for span in spans)


def test_reparent_and_bulk_reassign_spans(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
    company_id: uuid.UUID,
) -> None:
    root = client.post("/api/divisions", json={"name": "Root"}).json()
    child = client.post("/api/divisions", json={"name": "Child"}).json()
    moved = client.put(f"/api/divisions/{child['id']}", json={"parent_division_id": root["id"]})
    assert moved.status_code == 200

    contact = CRMContact(company_id=company_id, first_name="Ty", last_name="Ng")
    db_session.add(contact)
    db_session.commit()
    bulk = client.post(
        "/api/divisions/bulk-reassign",
        json={
            "assignments": [
                {"entity_type": "contact", "entity_id": str(contact.id), "new_division_id": child["id"]},
                {"entity_type": "contact", "entity_id": str(uuid.uuid4()), "new_division_id": child["id"]},
            ]
        },
    )
    assert bulk.status_code == 200

    spans = span_exporter.get_finished_spans()
    reparent_spans = [span for span in spans if span.name == "division.reparent"]
    assert any(
        span.attributes.get("division.id") == child["id"] and span.attributes.get("division.parent_id") == root["id"]
        for span in reparent_spans
    )
    bulk_spans = [span for span in spans if span.name == "division.bulk_reassign"]
    assert any(
        span.attributes.get("division.bulk.total") == 2 and span.attributes.get("division.bulk.failures") == 1
        for span in bulk_spans
    )
