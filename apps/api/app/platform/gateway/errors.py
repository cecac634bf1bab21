from __future__ import annotations

from app.platform.security.errors import ActionNotPermittedError


class GatewayError(Exception):
    """Any storage failure of a gateway call, surfaced once and never retried."""

    def __init__(self, table: str, action: str, message: str, *, constraint: bool = False) -> None:
        self.table = table
        self.action = action
        self.constraint = constraint
        super().__init__(message)


class GatewayQueryError(ValueError):
    """The request names an unknown table, column or embed, or a malformed value."""


class ReferenceNotFoundError(Exception):
    """A foreign key points at a row that is absent or owned by another user."""

    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(f"{column} does not reference an existing record")


class ImmutableTableError(ActionNotPermittedError):
    def __init__(self, table: str) -> None:
        super().__init__(table, "update")
