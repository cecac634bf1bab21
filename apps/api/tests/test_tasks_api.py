from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    user_id = uuid.uuid4()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(user_id=user_id, correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _iso(value: datetime) -> str:
    return value.isoformat()


def _create_task(client: TestClient, title: str, **fields: object) -> dict:
    response = client.post("/api/crm/tasks", json={"title": title, **fields})
    assert response.status_code == 201
    return response.json()


def test_create_task_defaults(client: TestClient) -> None:
    task = _create_task(client, "Send proposal", description="")

    assert task["priority"] == "medium"
    assert task["status"] == "pending"
    assert task["description"] is None
    assert task["due_date"] is None
    assert task["is_overdue"] is False


def test_overdue_flag_depends_on_status(client: TestClient) -> None:
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    late = _create_task(client, "Late follow-up", due_date=_iso(yesterday))
    done = _create_task(client, "Done already", due_date=_iso(yesterday), status="completed")
    future = _create_task(client, "Next week", due_date=_iso(yesterday + timedelta(days=8)))

    assert late["is_overdue"] is True
    assert done["is_overdue"] is False
    assert future["is_overdue"] is False

    completed = client.post(f"/api/crm/tasks/{late['id']}/status", json={"status": "completed"})
    assert completed.status_code == 200
    assert completed.json()["is_overdue"] is False


def test_tasks_sorted_by_due_date_with_undated_last(client: TestClient) -> None:
    now = datetime.now(timezone.utc)
    _create_task(client, "No date")
    _create_task(client, "In three days", due_date=_iso(now + timedelta(days=3)))
    _create_task(client, "Tomorrow", due_date=_iso(now + timedelta(days=1)))

    listing = client.get("/api/crm/tasks")

    assert listing.status_code == 200
    assert [item["title"] for item in listing.json()["items"]] == ["Tomorrow", "In three days", "No date"]


def test_status_filter(client: TestClient) -> None:
    _create_task(client, "Pending one")
    _create_task(client, "Working", status="in_progress")
    _create_task(client, "Finished", status="completed")

    assert client.get("/api/crm/tasks").json()["count"] == 3
    assert client.get("/api/crm/tasks", params={"status": "all"}).json()["count"] == 3
    in_progress = client.get("/api/crm/tasks", params={"status": "in_progress"}).json()
    assert [item["title"] for item in in_progress["items"]] == ["Working"]
    assert client.get("/api/crm/tasks", params={"status": "archived"}).status_code == 422


def test_empty_filtered_list_has_message(client: TestClient) -> None:
    listing = client.get("/api/crm/tasks", params={"status": "completed"}).json()

    assert listing["items"] == []
    assert listing["empty_message"] == "No tasks found"


def test_status_change_records_transition_once(client: TestClient) -> None:
    task = _create_task(client, "Call back")

    first = client.post(f"/api/crm/tasks/{task['id']}/status", json={"status": "in_progress"})
    second = client.post(f"/api/crm/tasks/{task['id']}/status", json={"status": "in_progress"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "in_progress"
    transitions = [entry for entry in audit.audit_entries if entry["action"] == "status_change"]
    assert len(transitions) == 1
    assert transitions[0]["after"] == {"status": "in_progress"}
    assert [item["event_type"] for item in events.published_events].count("crm.task.status_changed") == 1


def test_task_links_to_deal_and_survives_deal_deletion(client: TestClient) -> None:
    deal = client.post("/api/crm/deals", json={"title": "Renewal"}).json()
    task = _create_task(client, "Prepare contract", deal_id=deal["id"], priority="high")

    assert task["deal_id"] == deal["id"]
    assert client.delete(f"/api/crm/deals/{deal['id']}", params={"confirm": "true"}).status_code == 200

    refreshed = client.get(f"/api/crm/tasks/{task['id']}")
    assert refreshed.status_code == 200
    assert refreshed.json()["deal_id"] is None
    assert refreshed.json()["priority"] == "high"


def test_update_task_clears_due_date(client: TestClient) -> None:
    task = _create_task(client, "Call back", due_date=_iso(datetime.now(timezone.utc) + timedelta(days=2)))

    response = client.patch(f"/api/crm/tasks/{task['id']}", json={"due_date": ""})

    assert response.status_code == 200
    assert response.json()["due_date"] is None
    assert response.json()["title"] == "Call back"


def test_task_with_unknown_deal_is_rejected(client: TestClient) -> None:
    response = client.post("/api/crm/tasks", json={"title": "Orphan", "deal_id": str(uuid.uuid4())})

    assert response.status_code == 422
    assert response.json()["code"] == "crm_task_create_failed"
