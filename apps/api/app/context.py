from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
acting_user_id_var: ContextVar[str | None] = ContextVar("acting_user_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_acting_user_id(value: str | None) -> Token[str | None]:
    """Remember which user the current request acts for, for log records."""

    return acting_user_id_var.set(value)


def get_acting_user_id() -> str | None:
    return acting_user_id_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "user_id": get_acting_user_id()}
