from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.api import get_current_user as crm_get_current_user
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.security.context import AuthContext


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def actor() -> dict[str, uuid.UUID]:
    return {"user_id": uuid.uuid4()}


@pytest.fixture()
def client(db_session: Session, actor: dict[str, uuid.UUID]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(
            user_id=actor["user_id"],
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_company(client: TestClient, name: str, **fields: str) -> dict:
    response = client.post("/api/crm/companies", json={"name": name, **fields})
    assert response.status_code == 201
    return response.json()


def test_create_company_normalises_blank_fields(client: TestClient, actor: dict[str, uuid.UUID]) -> None:
    response = client.post(
        "/api/crm/companies",
        json={"name": " Acme Corp ", "industry": "", "email": "hello@acme.io", "website": "  "},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Acme Corp"
    assert body["industry"] is None
    assert body["website"] is None
    assert body["email"] == "hello@acme.io"
    assert body["user_id"] == str(actor["user_id"])


def test_create_company_requires_name(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "  "})

    assert response.status_code == 422


def test_create_company_rejects_invalid_email(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "Acme", "email": "acme-at-example"})

    assert response.status_code == 422


def test_list_companies_sorted_by_name_with_search(client: TestClient) -> None:
    _create_company(client, "Zeta Labs", industry="Biotech")
    _create_company(client, "Acme", industry="Software")
    _create_company(client, "Mango", email="sales@mango.example")

    listing = client.get("/api/crm/companies")
    assert listing.status_code == 200
    assert [item["name"] for item in listing.json()["items"]] == ["Acme", "Mango", "Zeta Labs"]
    assert listing.json()["count"] == 3
    assert listing.json()["empty_message"] is None

    by_industry = client.get("/api/crm/companies", params={"search": "SOFT"})
    assert [item["name"] for item in by_industry.json()["items"]] == ["Acme"]

    by_email = client.get("/api/crm/companies", params={"search": "mango.example"})
    assert [item["name"] for item in by_email.json()["items"]] == ["Mango"]

    none = client.get("/api/crm/companies", params={"search": "nothing"})
    assert none.json()["items"] == []
    assert none.json()["empty_message"] == "No companies found"


def test_update_company_only_changes_sent_fields(client: TestClient) -> None:
    company = _create_company(client, "Acme", industry="Software", phone="555")

    response = client.patch(f"/api/crm/companies/{company['id']}", json={"industry": ""})

    assert response.status_code == 200
    body = response.json()
    assert body["industry"] is None
    assert body["phone"] == "555"
    assert body["name"] == "Acme"

    updates = [entry for entry in audit.audit_entries if entry["action"] == "update"]
    assert updates[-1]["before"]["industry"] == "Software"
    assert updates[-1]["after"]["industry"] is None


def test_update_company_cannot_clear_name(client: TestClient) -> None:
    company = _create_company(client, "Acme")

    response = client.patch(f"/api/crm/companies/{company['id']}", json={"name": None})

    assert response.status_code == 422


def test_delete_company_requires_confirmation(client: TestClient) -> None:
    company = _create_company(client, "Acme")

    unconfirmed = client.delete(f"/api/crm/companies/{company['id']}")
    assert unconfirmed.status_code == 428
    assert unconfirmed.json()["code"] == "crm_company_delete_failed"
    assert client.get(f"/api/crm/companies/{company['id']}").status_code == 200

    confirmed = client.delete(f"/api/crm/companies/{company['id']}", params={"confirm": "true"})
    assert confirmed.status_code == 200
    assert confirmed.json() == {"status": "deleted"}
    assert client.get(f"/api/crm/companies/{company['id']}").status_code == 404
    assert any(item["event_type"] == "crm.company.deleted" for item in events.published_events)


def test_companies_are_private_to_their_owner(client: TestClient, actor: dict[str, uuid.UUID]) -> None:
    company = _create_company(client, "Acme")

    actor["user_id"] = uuid.uuid4()

    assert client.get("/api/crm/companies").json()["items"] == []
    missing = client.get(f"/api/crm/companies/{company['id']}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "crm_company_get_failed"
    assert client.patch(f"/api/crm/companies/{company['id']}", json={"name": "Mine now"}).status_code == 404
    assert client.delete(f"/api/crm/companies/{company['id']}", params={"confirm": "true"}).status_code == 404


def test_create_company_records_audit_and_event(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "Acme"}, headers={"X-Correlation-Id": "corr-co-1"})
    assert response.status_code == 201
    company_id = response.json()["id"]

    entries = audit.entries_for("crm.company", company_id)
    assert [entry["action"] for entry in entries] == ["create"]
    assert entries[0]["correlation_id"] == "corr-co-1"

    created = [item for item in events.published_events if item["event_type"] == "crm.company.created"]
    assert created
    assert created[-1]["payload"] == {"company_id": company_id}
    assert created[-1]["correlation_id"] == "corr-co-1"
