from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.crm import repositories  # noqa: F401
from app.crm.store import ConfirmationRequiredError, EntityStore
from app.platform.gateway import DataGateway, GatewayError, get_repositories
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


@pytest.fixture()
def gateway(db_session: Session) -> DataGateway:
    return DataGateway(db_session, AuthContext(user_id=uuid.uuid4()), get_repositories())


def test_create_refetches_and_returns_stored_row(gateway: DataGateway) -> None:
    store = EntityStore(gateway, "contacts", embed=("company",))
    company = gateway.insert("companies", {"name": "Acme"})

    created = store.create({"first_name": "Ada", "last_name": "Lovelace", "company_id": company["id"]})

    assert created["company"]["name"] == "Acme"
    assert [row["id"] for row in store.rows] == [created["id"]]


def test_update_returns_none_when_nothing_changed(gateway: DataGateway) -> None:
    store = EntityStore(gateway, "companies")

    assert store.update(uuid.uuid4(), {"name": "Ghost"}) is None


def test_transition_changes_single_column(gateway: DataGateway) -> None:
    store = EntityStore(gateway, "deals")
    deal = store.create({"title": "Renewal"})

    moved = store.transition(deal["id"], "stage", "proposal")

    assert moved is not None
    assert moved["stage"] == "proposal"
    assert store.find(deal["id"])["stage"] == "proposal"


def test_delete_requires_confirmation_before_touching_storage(
    gateway: DataGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = EntityStore(gateway, "companies")
    company = store.create({"name": "Acme"})
    calls: list[str] = []
    monkeypatch.setattr(gateway, "delete", lambda *args, **kwargs: calls.append("delete") or 1)

    with pytest.raises(ConfirmationRequiredError):
        store.delete(company["id"], confirm=False)

    assert calls == []


def test_delete_with_confirmation_refetches(gateway: DataGateway) -> None:
    store = EntityStore(gateway, "companies")
    company = store.create({"name": "Acme"})

    assert store.delete(company["id"], confirm=True) is True
    assert store.rows == []
    assert store.delete(company["id"], confirm=True) is False


def test_failed_refresh_keeps_previous_rows(gateway: DataGateway, monkeypatch: pytest.MonkeyPatch) -> None:
    store = EntityStore(gateway, "companies")
    store.create({"name": "Acme"})
    previous = list(store.rows)

    def failing_select(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise GatewayError("companies", "select", "connection lost")

    monkeypatch.setattr(gateway, "select", failing_select)

    with pytest.raises(GatewayError):
        store.refresh()

    assert store.rows == previous
    assert store.last_error is not None


def test_failed_refetch_after_insert_still_returns_inserted_row(
    gateway: DataGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = EntityStore(gateway, "companies")

    def failing_select(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise GatewayError("companies", "select", "connection lost")

    monkeypatch.setattr(gateway, "select", failing_select)

    created = store.create({"name": "Acme"})

    assert created["name"] == "Acme"
    assert store.rows == []
    assert gateway.count("companies") == 1
