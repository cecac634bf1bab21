from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from app.metrics import observe_gateway_operation
from app.otel import get_tracer
from app.platform.gateway.errors import (
    GatewayError,
    GatewayQueryError,
    ImmutableTableError,
    ReferenceNotFoundError,
)
from app.platform.gateway.query import Order, coerce_value
from app.platform.security.context import AuthContext
from app.platform.security.errors import ActionNotPermittedError
from app.platform.security.policies import CURRENT_USER_SETTING, ResourceAction
from app.platform.security.repository import BaseRepository


logger = logging.getLogger("app.gateway")
tracer = get_tracer("app.gateway")


class DataGateway:
    """The single path from the application to storage.

    Every call is evaluated for ``ctx.user_id``: reads only see that user's
    rows and writes only reach them. Mutations commit immediately; there is
    no caching and no retry.
    """

    def __init__(self, session: Session, ctx: AuthContext, repositories: Mapping[str, BaseRepository]) -> None:
        self.session = session
        self.ctx = ctx
        self._repositories = repositories

    @property
    def tables(self) -> list[str]:
        return sorted(self._repositories)

    def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        order: Sequence[Order] | None = None,
        embed: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        repository = self._repository(table)
        embed = self._embeds(repository, embed)
        repository.ensure_permitted(self.ctx, ResourceAction.SELECT)

        stmt = repository.apply_scope_query(select(repository.model), self.ctx)
        stmt = self._apply_filters(stmt, repository, filters)
        for item in order if order is not None else repository.default_order:
            stmt = stmt.order_by(item.clause(self._attribute(repository, item.column)))
        if limit is not None:
            stmt = stmt.limit(limit)
        stmt = stmt.options(*repository.embed_options(embed, self.ctx))

        with self._operation(table, "select") as span:
            records = self.session.scalars(stmt).all()
            rows = [repository.to_row(record, embed) for record in records]
            span.set_attribute("gateway.row_count", len(rows))
        logger.debug("gateway.select", extra={"table": table, "action": "select", "row_count": len(rows)})
        return rows

    def select_one(self, table: str, row_id: uuid.UUID | str, *, embed: Sequence[str] = ()) -> dict[str, Any] | None:
        rows = self.select(table, filters={"id": row_id}, embed=embed, limit=1, order=())
        return rows[0] if rows else None

    def count(self, table: str, *, filters: Mapping[str, Any] | None = None) -> int:
        repository = self._repository(table)
        repository.ensure_permitted(self.ctx, ResourceAction.SELECT)

        stmt = repository.apply_scope_query(select(func.count()).select_from(repository.model), self.ctx)
        stmt = self._apply_filters(stmt, repository, filters)
        with self._operation(table, "count"):
            total = int(self.session.scalar(stmt) or 0)
        return total

    def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        repository = self._repository(table)
        repository.ensure_permitted(self.ctx, ResourceAction.INSERT)
        payload = repository.validate_write_security(dict(values), self.ctx, action=ResourceAction.INSERT)
        payload = self._coerce_payload(repository, payload)

        with self._operation(table, "insert") as span:
            self._check_references(repository, payload)
            record = repository.model(**payload)
            self.session.add(record)
            self.session.flush()
            row = repository.to_row(record)
            self.session.commit()
            span.set_attribute("gateway.row_id", str(row["id"]))
        logger.info("gateway.insert", extra={"table": table, "action": "insert", "row_id": str(row["id"])})
        return row

    def update(self, table: str, row_id: uuid.UUID | str, values: Mapping[str, Any]) -> int:
        repository = self._repository(table)
        try:
            repository.ensure_permitted(self.ctx, ResourceAction.UPDATE)
        except ActionNotPermittedError as exc:
            raise ImmutableTableError(table) from exc
        payload = repository.validate_write_security(dict(values), self.ctx, action=ResourceAction.UPDATE)
        payload = self._coerce_payload(repository, payload)
        if "updated_at" in repository.columns():
            payload["updated_at"] = datetime.now(timezone.utc)

        id_column = self._attribute(repository, "id")
        stmt = (
            update(repository.model)
            .where(id_column == coerce_value(id_column, str(row_id)))
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        stmt = repository.apply_scope_query(stmt, self.ctx, action=ResourceAction.UPDATE)

        with self._operation(table, "update") as span:
            self._check_references(repository, payload)
            affected = self.session.execute(stmt).rowcount
            self.session.commit()
            span.set_attribute("gateway.row_count", affected)
        logger.info(
            "gateway.update",
            extra={"table": table, "action": "update", "row_id": str(row_id), "row_count": affected},
        )
        return affected

    def delete(self, table: str, row_id: uuid.UUID | str) -> int:
        repository = self._repository(table)
        repository.ensure_permitted(self.ctx, ResourceAction.DELETE)

        id_column = self._attribute(repository, "id")
        stmt = (
            delete(repository.model)
            .where(id_column == coerce_value(id_column, str(row_id)))
            .execution_options(synchronize_session=False)
        )
        stmt = repository.apply_scope_query(stmt, self.ctx, action=ResourceAction.DELETE)

        with self._operation(table, "delete") as span:
            affected = self.session.execute(stmt).rowcount
            self.session.commit()
            span.set_attribute("gateway.row_count", affected)
        logger.info(
            "gateway.delete",
            extra={"table": table, "action": "delete", "row_id": str(row_id), "row_count": affected},
        )
        return affected

    @contextmanager
    def _operation(self, table: str, action: str) -> Iterator[Any]:
        started = perf_counter()
        outcome = "ok"
        with tracer.start_as_current_span(f"gateway.{action}") as span:
            span.set_attribute("gateway.table", table)
            span.set_attribute("gateway.action", action)
            if self.ctx.correlation_id:
                span.set_attribute("correlation_id", self.ctx.correlation_id)
            try:
                self._bind_current_user()
                yield span
            except SQLAlchemyError as exc:
                outcome = "error"
                self.session.rollback()
                cause = getattr(exc, "orig", None) or exc
                logger.error("gateway.failed", extra={"table": table, "action": action, "error": str(cause)})
                raise GatewayError(table, action, str(cause), constraint=isinstance(exc, IntegrityError)) from exc
            except ReferenceNotFoundError:
                outcome = "rejected"
                raise
            finally:
                span.set_attribute("gateway.outcome", outcome)
                observe_gateway_operation(table, action, outcome, perf_counter() - started)

    def _bind_current_user(self) -> None:
        if self.session.get_bind().dialect.name != "postgresql":
            return
        self.session.execute(
            text("SELECT set_config(:setting, :user_id, true)"),
            {"setting": CURRENT_USER_SETTING, "user_id": str(self.ctx.user_id)},
        )

    def _repository(self, table: str) -> BaseRepository:
        repository = self._repositories.get(table)
        if repository is None:
            raise GatewayQueryError(f"unknown table '{table}'")
        return repository

    @staticmethod
    def _attribute(repository: BaseRepository, column: str) -> InstrumentedAttribute[Any]:
        if column not in repository.columns():
            raise GatewayQueryError(f"unknown column '{column}' on '{repository.resource}'")
        return getattr(repository.model, column)

    @staticmethod
    def _embeds(repository: BaseRepository, embed: Sequence[str]) -> tuple[str, ...]:
        names = tuple(embed)
        unknown = [name for name in names if name not in repository.embeds]
        if unknown:
            raise GatewayQueryError(f"'{repository.resource}' cannot embed {', '.join(unknown)}")
        return names

    def _apply_filters(self, stmt: Any, repository: BaseRepository, filters: Mapping[str, Any] | None) -> Any:
        for column, value in (filters or {}).items():
            attribute = self._attribute(repository, column)
            coerced = coerce_value(attribute, value)
            stmt = stmt.where(attribute.is_(None) if coerced is None else attribute == coerced)
        return stmt

    def _coerce_payload(self, repository: BaseRepository, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            column: coerce_value(self._attribute(repository, column), value) for column, value in payload.items()
        }

    def _check_references(self, repository: BaseRepository, payload: Mapping[str, Any]) -> None:
        """Every non-null reference must resolve to a row the caller owns."""

        for column, target_table in repository.reference_targets().items():
            value = payload.get(column)
            if value is None:
                continue
            target = self._repository(target_table)
            stmt = target.apply_scope_query(select(target.model.id).where(target.model.id == value), self.ctx)
            if self.session.scalar(stmt) is None:
                raise ReferenceNotFoundError(repository.resource, column)
