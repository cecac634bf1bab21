from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from app.platform.gateway.errors import GatewayError
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.query import Order


logger = logging.getLogger("app.crm")


class ConfirmationRequiredError(Exception):
    """A destructive action was requested without the caller confirming it."""

    def __init__(self, table: str, row_id: uuid.UUID) -> None:
        self.table = table
        self.row_id = row_id
        super().__init__(f"deleting from '{table}' requires confirmation")


class EntityStore:
    """One table's list, kept in step with storage by refetching after every write.

    Rows are never patched locally: each mutation is a single gateway call
    followed by a full refetch, and what callers get back is the row as the
    refetch returned it. A failed fetch leaves ``rows`` as they were.
    """

    def __init__(
        self,
        gateway: DataGateway,
        table: str,
        *,
        order: Sequence[Order] | None = None,
        embed: Sequence[str] = (),
        filters: Mapping[str, Any] | None = None,
    ) -> None:
        self.gateway = gateway
        self.table = table
        self.order = order
        self.embed = tuple(embed)
        self.filters = dict(filters or {})
        self.rows: list[dict[str, Any]] = []
        self.last_error: GatewayError | None = None

    def refresh(self) -> list[dict[str, Any]]:
        try:
            rows = self.gateway.select(self.table, filters=self.filters, order=self.order, embed=self.embed)
        except GatewayError as exc:
            self.last_error = exc
            raise
        self.rows = rows
        self.last_error = None
        return self.rows

    def find(self, row_id: uuid.UUID) -> dict[str, Any] | None:
        for row in self.rows:
            if row["id"] == row_id:
                return row
        return None

    def create(self, values: Mapping[str, Any]) -> dict[str, Any]:
        inserted = self.gateway.insert(self.table, values)
        self._refetch()
        return self.find(inserted["id"]) or inserted

    def update(self, row_id: uuid.UUID, values: Mapping[str, Any]) -> dict[str, Any] | None:
        if self.gateway.update(self.table, row_id, values) == 0:
            return None
        self._refetch()
        row = self.find(row_id)
        if row is None and self.last_error is not None:
            row = self.gateway.select_one(self.table, row_id, embed=self.embed)
        return row

    def transition(self, row_id: uuid.UUID, column: str, value: Any) -> dict[str, Any] | None:
        """Quick single-column change such as a deal's stage or a task's status."""

        return self.update(row_id, {column: value})

    def delete(self, row_id: uuid.UUID, *, confirm: bool) -> bool:
        if not confirm:
            raise ConfirmationRequiredError(self.table, row_id)
        if self.gateway.delete(self.table, row_id) == 0:
            return False
        self._refetch()
        return True

    def _refetch(self) -> None:
        try:
            self.refresh()
        except GatewayError as exc:
            logger.warning(
                "store.refetch_failed",
                extra={"table": self.table, "action": "refetch", "error": str(exc)},
            )
