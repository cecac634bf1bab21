from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, TypeVar

from sqlalchemy.orm import with_loader_criteria
from sqlalchemy.sql import Delete, Select, Update

from app import audit
from app.metrics import observe_policy_denied_write
from app.platform.security.context import AuthContext
from app.platform.security.errors import ActionNotPermittedError, AuthorizationError
from app.platform.security.policies import OWNER_COLUMN, ResourceAction, get_policy_backend


logger = logging.getLogger("app.security")

ScopedStatement = TypeVar("ScopedStatement", Select, Update, Delete)


def ensure_action_permitted(resource: str, action: ResourceAction, ctx: AuthContext) -> None:
    if get_policy_backend().is_action_permitted(resource, action, ctx):
        return
    _emit_denied(resource=resource, action=action, ctx=ctx, reason="no_policy")
    raise ActionNotPermittedError(resource, action.value)


def apply_owner_filter(
    stmt: ScopedStatement,
    model: type[Any],
    ctx: AuthContext,
    *,
    action: ResourceAction = ResourceAction.SELECT,
) -> ScopedStatement:
    """Restrict a select/update/delete to rows owned by the caller.

    Rows owned by anyone else simply drop out of the result, so callers see
    the same outcome for a foreign row as for a missing one.
    """

    owner = get_policy_backend().row_owner(model.__tablename__, action, ctx)
    return stmt.where(getattr(model, OWNER_COLUMN) == owner)


def owner_loader_criteria(models: Iterable[type[Any]], ctx: AuthContext) -> list[Any]:
    """Loader options that apply the owner filter to embedded relationship loads."""

    backend = get_policy_backend()
    return [
        with_loader_criteria(
            model,
            getattr(model, OWNER_COLUMN) == backend.row_owner(model.__tablename__, ResourceAction.SELECT, ctx),
        )
        for model in models
    ]


def stamp_owner(resource: str, payload: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Fill the owner from the session and refuse a row that names somebody else."""

    stamped = dict(payload)
    if stamped.get(OWNER_COLUMN) is None:
        stamped[OWNER_COLUMN] = get_policy_backend().row_owner(resource, ResourceAction.INSERT, ctx)
    validate_owner_write(resource, stamped, ctx, action=ResourceAction.INSERT)
    return stamped


def validate_owner_write(
    resource: str,
    payload: dict[str, Any],
    ctx: AuthContext,
    *,
    action: ResourceAction = ResourceAction.UPDATE,
) -> None:
    if action == ResourceAction.UPDATE and OWNER_COLUMN not in payload:
        return
    if get_policy_backend().check_new_row(resource, payload, ctx):
        return

    _emit_denied(resource=resource, action=action, ctx=ctx, reason="owner_mismatch")
    raise AuthorizationError(f"Row owner does not match the authenticated user for resource '{resource}'")


def _emit_denied(*, resource: str, action: ResourceAction, ctx: AuthContext, reason: str) -> None:
    observe_policy_denied_write(resource=resource, action=action.value)
    logger.warning("policy.denied", extra={"resource": resource, "action": action.value, "policy": reason})
    audit.record(
        actor_user_id=ctx.actor,
        entity_type="security.rls",
        entity_id=resource,
        action="rls.denied",
        before=None,
        after={"resource": resource, "action": action.value, "reason": reason},
        correlation_id=ctx.correlation_id,
    )
