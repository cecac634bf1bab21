from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect

from app import audit
from app.metrics import observe_policy_denied_write
from app.platform.security.context import AuthContext
from app.platform.security.errors import ForbiddenFieldError


logger = logging.getLogger("app.security")

# Filled in by the server on insert and by the gateway on update.
SERVER_MANAGED_COLUMNS = frozenset({"id", "created_at", "updated_at"})


def column_names(model: type[Any]) -> set[str]:
    return {attribute.key for attribute in inspect(model).column_attrs}


def writable_columns(model: type[Any]) -> set[str]:
    return column_names(model) - SERVER_MANAGED_COLUMNS


def validate_fls_write(resource: str, model: type[Any], payload: dict[str, Any], ctx: AuthContext, *, action: str) -> None:
    """Refuse payloads that name unknown or server-managed columns."""

    allowed = writable_columns(model)
    denied_fields = [field_name for field_name in payload if field_name not in allowed]
    if not denied_fields:
        return

    observe_policy_denied_write(resource=resource, action=action)
    logger.info("fls.denied", extra={"resource": resource, "action": action, "error": ",".join(sorted(denied_fields))})
    audit.record(
        actor_user_id=ctx.actor,
        entity_type="security.fls",
        entity_id=resource,
        action=f"fls.{action}",
        before=None,
        after={"resource": resource, "denied_fields": sorted(denied_fields)},
        correlation_id=ctx.correlation_id,
    )
    raise ForbiddenFieldError(resource=resource, fields=denied_fields)
