from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

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
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, user_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(user_id=user_id, correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_deal(client: TestClient, title: str, **fields: object) -> dict:
    response = client.post("/api/crm/deals", json={"title": title, **fields})
    assert response.status_code == 201
    return response.json()


def test_create_deal_defaults(client: TestClient) -> None:
    deal = _create_deal(client, "Renewal")

    assert deal["stage"] == "lead"
    assert deal["stage_label"] == "Lead"
    assert Decimal(deal["value"]) == Decimal("0")
    assert deal["probability"] == 0
    assert deal["company"] is None
    assert deal["contact"] is None


def test_create_deal_parses_lenient_numbers(client: TestClient) -> None:
    deal = _create_deal(client, "Expansion", value="12500.50 USD", probability="150")

    assert Decimal(deal["value"]) == Decimal("12500.50")
    assert deal["probability"] == 100


def test_out_of_range_numbers_are_stored_as_zero(client: TestClient) -> None:
    response = client.post(
        "/api/crm/deals",
        content='{"title": "Big", "probability": 1e999, "value": "1e999999"}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 201
    assert response.json()["probability"] == 0
    assert Decimal(response.json()["value"]) == Decimal("0")

    assert client.get("/api/crm/deals").status_code == 200
    assert client.get("/api/crm/deals/board").status_code == 200
    dashboard = client.get("/api/crm/dashboard")
    assert dashboard.status_code == 200
    assert Decimal(dashboard.json()["total_deal_value"]) == Decimal("0")


def test_create_deal_embeds_company_and_contact(client: TestClient) -> None:
    company = client.post("/api/crm/companies", json={"name": "Acme"}).json()
    contact = client.post(
        "/api/crm/contacts",
        json={"first_name": "Wile", "last_name": "Coyote", "company_id": company["id"]},
    ).json()

    deal = _create_deal(
        client,
        "Rockets",
        value=900,
        stage="negotiation",
        company_id=company["id"],
        contact_id=contact["id"],
        expected_close_date="2026-12-01",
    )

    assert deal["company"] == {"id": company["id"], "name": "Acme"}
    assert deal["contact"] == {"id": contact["id"], "first_name": "Wile", "last_name": "Coyote"}
    assert deal["stage_label"] == "Negotiation"
    assert deal["expected_close_date"] == "2026-12-01"


def test_create_deal_rejects_unknown_stage(client: TestClient) -> None:
    response = client.post("/api/crm/deals", json={"title": "Bad", "stage": "won"})

    assert response.status_code == 422


def test_board_lists_all_six_stages_in_order(client: TestClient) -> None:
    _create_deal(client, "A", value=100, stage="lead")
    _create_deal(client, "B", value=250, stage="lead")
    _create_deal(client, "C", value=1000, stage="closed_won")

    response = client.get("/api/crm/deals/board")

    assert response.status_code == 200
    board = response.json()
    assert [column["stage"] for column in board["columns"]] == [
        "lead",
        "qualified",
        "proposal",
        "negotiation",
        "closed_won",
        "closed_lost",
    ]
    assert [column["label"] for column in board["columns"]][4] == "Closed Won"
    lead = board["columns"][0]
    assert lead["count"] == 2
    assert Decimal(lead["total_value"]) == Decimal("350")
    assert board["columns"][1]["deals"] == []
    assert board["total_deals"] == 3
    assert Decimal(board["pipeline_value"]) == Decimal("1350")


def test_stage_change_moves_deal_and_is_idempotent(client: TestClient) -> None:
    deal = _create_deal(client, "Renewal")

    moved = client.post(f"/api/crm/deals/{deal['id']}/stage", json={"stage": "proposal"})
    assert moved.status_code == 200
    assert moved.json()["stage"] == "proposal"
    assert moved.json()["stage_label"] == "Proposal"

    again = client.post(f"/api/crm/deals/{deal['id']}/stage", json={"stage": "proposal"})
    assert again.status_code == 200
    assert again.json()["stage"] == "proposal"

    stage_changes = [entry for entry in audit.audit_entries if entry["action"] == "stage_change"]
    assert len(stage_changes) == 1
    assert stage_changes[0]["before"] == {"stage": "lead"}
    assert stage_changes[0]["after"] == {"stage": "proposal"}

    changed_events = [item for item in events.published_events if item["event_type"] == "crm.deal.stage_changed"]
    assert len(changed_events) == 1
    assert changed_events[0]["payload"]["to_stage"] == "proposal"

    board = client.get("/api/crm/deals/board").json()
    assert board["columns"][2]["count"] == 1


def test_stage_change_of_missing_deal_is_not_found(client: TestClient) -> None:
    response = client.post(f"/api/crm/deals/{uuid.uuid4()}/stage", json={"stage": "qualified"})

    assert response.status_code == 404
    assert response.json()["code"] == "crm_deal_stage_change_failed"


def test_update_deal_keeps_unsent_fields(client: TestClient) -> None:
    deal = _create_deal(client, "Renewal", value=500, probability=20, notes="first call went well")

    response = client.patch(f"/api/crm/deals/{deal['id']}", json={"probability": "60"})

    assert response.status_code == 200
    body = response.json()
    assert body["probability"] == 60
    assert Decimal(body["value"]) == Decimal("500")
    assert body["notes"] == "first call went well"


def test_deals_listed_newest_first(client: TestClient) -> None:
    _create_deal(client, "First")
    _create_deal(client, "Second")

    listing = client.get("/api/crm/deals")

    assert [item["title"] for item in listing.json()["items"]] == ["Second", "First"]


def test_empty_deal_list_has_message(client: TestClient) -> None:
    listing = client.get("/api/crm/deals")

    assert listing.json() == {"items": [], "count": 0, "empty_message": "No deals yet"}


def test_delete_deal(client: TestClient) -> None:
    deal = _create_deal(client, "Renewal")

    assert client.delete(f"/api/crm/deals/{deal['id']}").status_code == 428
    assert client.delete(f"/api/crm/deals/{deal['id']}", params={"confirm": "true"}).status_code == 200
    assert client.get("/api/crm/deals").json()["count"] == 0
