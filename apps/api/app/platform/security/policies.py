from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from threading import Lock
from typing import Any, Protocol

from app.platform.security.context import AuthContext


OWNER_COLUMN = "user_id"

# Postgres has no notion of the API caller; the gateway sets this GUC per transaction.
CURRENT_USER_SETTING = "app.current_user_id"
CURRENT_USER_SQL = f"nullif(current_setting('{CURRENT_USER_SETTING}', true), '')::uuid"


class ResourceAction(StrEnum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


_POLICY_VERBS = {
    ResourceAction.SELECT: "view",
    ResourceAction.INSERT: "insert",
    ResourceAction.UPDATE: "update",
    ResourceAction.DELETE: "delete",
}


@dataclass(frozen=True, slots=True)
class RowPolicy:
    """One row-level rule: rows of ``table`` are reachable for ``action`` only by their owner."""

    name: str
    table: str
    action: ResourceAction
    owner_column: str = OWNER_COLUMN

    @property
    def using(self) -> str | None:
        if self.action == ResourceAction.INSERT:
            return None
        return f"({CURRENT_USER_SQL} = {self.owner_column})"

    @property
    def with_check(self) -> str | None:
        if self.action in {ResourceAction.SELECT, ResourceAction.DELETE}:
            return None
        return f"({CURRENT_USER_SQL} = {self.owner_column})"

    def create_sql(self) -> str:
        parts = [f'CREATE POLICY "{self.name}" ON {self.table} FOR {self.action.value.upper()}']
        if self.using is not None:
            parts.append(f"USING {self.using}")
        if self.with_check is not None:
            parts.append(f"WITH CHECK {self.with_check}")
        return " ".join(parts)

    def drop_sql(self) -> str:
        return f'DROP POLICY IF EXISTS "{self.name}" ON {self.table}'


def owner_policies(
    table: str,
    actions: Iterable[ResourceAction] = tuple(ResourceAction),
) -> tuple[RowPolicy, ...]:
    return tuple(
        RowPolicy(name=f"Users can {_POLICY_VERBS[action]} own {table}", table=table, action=action)
        for action in actions
    )


POLICY_CATALOGUE: dict[str, tuple[RowPolicy, ...]] = {
    "companies": owner_policies("companies"),
    "contacts": owner_policies("contacts"),
    "deals": owner_policies("deals"),
    "tasks": owner_policies("tasks"),
    # The activity log is append-only: no update policy exists.
    "activities": owner_policies(
        "activities",
        (ResourceAction.SELECT, ResourceAction.INSERT, ResourceAction.DELETE),
    ),
}


def enable_rls_sql(table: str, catalogue: Mapping[str, tuple[RowPolicy, ...]] | None = None) -> list[str]:
    """DDL that switches on row-level security for ``table`` and installs its policies."""

    policies = (catalogue or POLICY_CATALOGUE)[table]
    statements = [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
    ]
    statements.extend(policy.create_sql() for policy in policies)
    return statements


def disable_rls_sql(table: str, catalogue: Mapping[str, tuple[RowPolicy, ...]] | None = None) -> list[str]:
    policies = (catalogue or POLICY_CATALOGUE)[table]
    statements = [policy.drop_sql() for policy in policies]
    statements.append(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
    statements.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
    return statements


class PolicyBackend(Protocol):
    """Pluggable row-policy interface consulted by the data gateway on every operation."""

    def is_action_permitted(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        ...

    def row_owner(self, resource: str, action: ResourceAction, ctx: AuthContext) -> uuid.UUID:
        ...

    def check_new_row(self, resource: str, row: Mapping[str, Any], ctx: AuthContext) -> bool:
        ...


class OwnerPolicyBackend:
    """Every row belongs to exactly one user; only that user may see or touch it."""

    def __init__(self, catalogue: Mapping[str, tuple[RowPolicy, ...]] | None = None) -> None:
        self._catalogue = dict(catalogue or POLICY_CATALOGUE)

    def policy_for(self, resource: str, action: ResourceAction) -> RowPolicy | None:
        for policy in self._catalogue.get(resource, ()):
            if policy.action == action:
                return policy
        return None

    def is_action_permitted(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        return self.policy_for(resource, action) is not None

    def row_owner(self, resource: str, action: ResourceAction, ctx: AuthContext) -> uuid.UUID:
        return ctx.user_id

    def check_new_row(self, resource: str, row: Mapping[str, Any], ctx: AuthContext) -> bool:
        value = row.get(OWNER_COLUMN)
        if value is None:
            return False
        try:
            return uuid.UUID(str(value)) == ctx.user_id
        except ValueError:
            return False


_POLICY_BACKEND: PolicyBackend = OwnerPolicyBackend()
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend
