from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.context import get_correlation_id, set_acting_user_id
from app.core.auth import require_authenticated_user
from app.core.database import get_db
from app.core.errors import http_error_response
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.http import GATEWAY_ERRORS, to_http_exception
from app.platform.gateway.query import parse_embed, parse_eq_filter, parse_order
from app.platform.gateway.registry import get_repositories
from app.platform.security.context import AuthContext


router = APIRouter(prefix="/api/data", tags=["data"])

RESERVED_PARAMS = {"order", "embed", "count", "limit"}


async def get_data_auth_context(
    request: Request,
    user_id: uuid.UUID = Depends(require_authenticated_user),
) -> AuthContext:
    set_acting_user_id(str(user_id))
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return AuthContext(user_id=user_id, correlation_id=correlation_id)


def get_gateway(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_data_auth_context),
) -> DataGateway:
    return DataGateway(db, ctx, get_repositories())


@router.get("/{table}", response_model=None)
def select_rows(
    request: Request,
    table: str,
    order: str | None = Query(default=None),
    embed: str | None = Query(default=None),
    count: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        filters = {
            key: parse_eq_filter(value) for key, value in request.query_params.items() if key not in RESERVED_PARAMS
        }
        if count is not None:
            if count != "exact":
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="count must be 'exact'")
            return {"count": gateway.count(table, filters=filters)}
        rows = gateway.select(
            table,
            filters=filters,
            order=parse_order(order) if order else None,
            embed=parse_embed(embed),
            limit=limit,
        )
        return jsonable_encoder(rows)
    except GATEWAY_ERRORS as exc:
        return http_error_response(request, to_http_exception(exc), code="data_select_failed")
    except HTTPException as exc:
        return http_error_response(request, exc, code="data_select_failed")


@router.get("/{table}/{row_id}", response_model=None)
def select_row(
    request: Request,
    table: str,
    row_id: uuid.UUID,
    embed: str | None = Query(default=None),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        row = gateway.select_one(table, row_id, embed=parse_embed(embed))
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="record not found")
        return jsonable_encoder(row)
    except GATEWAY_ERRORS as exc:
        return http_error_response(request, to_http_exception(exc), code="data_select_failed")
    except HTTPException as exc:
        return http_error_response(request, exc, code="data_select_failed")


@router.post("/{table}", status_code=status.HTTP_201_CREATED, response_model=None)
def insert_row(
    request: Request,
    table: str,
    values: dict[str, Any] = Body(...),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        return jsonable_encoder(gateway.insert(table, values))
    except GATEWAY_ERRORS as exc:
        return http_error_response(request, to_http_exception(exc), code="data_insert_failed")


@router.patch("/{table}/{row_id}", response_model=None)
def update_row(
    request: Request,
    table: str,
    row_id: uuid.UUID,
    values: dict[str, Any] = Body(...),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        affected = gateway.update(table, row_id, values)
        if affected == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="record not found")
        return {"row_count": affected}
    except GATEWAY_ERRORS as exc:
        return http_error_response(request, to_http_exception(exc), code="data_update_failed")
    except HTTPException as exc:
        return http_error_response(request, exc, code="data_update_failed")


@router.delete("/{table}/{row_id}", response_model=None)
def delete_row(
    request: Request,
    table: str,
    row_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        affected = gateway.delete(table, row_id)
        if affected == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="record not found")
        return {"row_count": affected}
    except GATEWAY_ERRORS as exc:
        return http_error_response(request, to_http_exception(exc), code="data_delete_failed")
    except HTTPException as exc:
        return http_error_response(request, exc, code="data_delete_failed")
