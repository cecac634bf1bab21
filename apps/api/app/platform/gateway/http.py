from __future__ import annotations

from fastapi import HTTPException, status

from app.platform.gateway.errors import GatewayError, GatewayQueryError, ReferenceNotFoundError
from app.platform.security.errors import ActionNotPermittedError, AuthorizationError, ForbiddenFieldError


def to_http_exception(exc: Exception) -> HTTPException:
    """Map gateway and policy failures onto the status codes the API answers with."""

    if isinstance(exc, GatewayQueryError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ReferenceNotFoundError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.column, "message": str(exc)},
        )
    if isinstance(exc, ActionNotPermittedError):
        return HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail=str(exc))
    if isinstance(exc, ForbiddenFieldError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"forbidden_fields": exc.fields})
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, GatewayError):
        if exc.constraint:
            return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="record violates a data constraint")
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="data service unavailable")
    raise TypeError(f"no HTTP mapping for {type(exc).__name__}")


GATEWAY_ERRORS = (GatewayError, GatewayQueryError, ReferenceNotFoundError, AuthorizationError)
