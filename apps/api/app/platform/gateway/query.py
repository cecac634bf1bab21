from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from app.platform.gateway.errors import GatewayQueryError


@dataclass(frozen=True, slots=True)
class Order:
    """Sort key for a select; ``nulls_first=None`` keeps the database default."""

    column: str
    ascending: bool = True
    nulls_first: bool | None = None

    def clause(self, attribute: InstrumentedAttribute[Any]) -> ColumnElement[Any]:
        ordered = attribute.asc() if self.ascending else attribute.desc()
        if self.nulls_first is True:
            return ordered.nulls_first()
        if self.nulls_first is False:
            return ordered.nulls_last()
        return ordered


def parse_order(raw: str) -> list[Order]:
    """Parse ``created_at.desc,due_date.asc.nullslast`` into sort keys."""

    orders: list[Order] = []
    for item in (part.strip() for part in raw.split(",")):
        if not item:
            continue
        column, *modifiers = item.split(".")
        ascending = True
        nulls_first: bool | None = None
        for modifier in modifiers:
            if modifier == "asc":
                ascending = True
            elif modifier == "desc":
                ascending = False
            elif modifier == "nullsfirst":
                nulls_first = True
            elif modifier == "nullslast":
                nulls_first = False
            else:
                raise GatewayQueryError(f"unknown order modifier '{modifier}'")
        orders.append(Order(column=column, ascending=ascending, nulls_first=nulls_first))
    return orders


def parse_embed(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_eq_filter(raw: str) -> str | None:
    """Accept ``eq.<value>``; ``eq.null`` matches missing references."""

    if not raw.startswith("eq."):
        raise GatewayQueryError(f"unsupported filter '{raw}', only eq.<value> is accepted")
    value = raw[3:]
    return None if value == "null" else value


def coerce_value(attribute: InstrumentedAttribute[Any], value: Any) -> Any:
    """Convert a query or payload value into the column's Python type.

    Text is parsed; any other value must already have the column's type.
    A mismatch is a client error, never a storage failure.
    """

    if value is None:
        return None

    column_type = attribute.property.columns[0].type
    if isinstance(value, str):
        return _parse_text(attribute, column_type, value)

    if isinstance(value, bool) and not isinstance(column_type, Boolean):
        raise _invalid(attribute, value)
    if isinstance(column_type, Numeric):
        if not isinstance(value, (int, float, Decimal)):
            raise _invalid(attribute, value)
        return _finite_decimal(attribute, str(value))
    for sql_type, python_types in _ACCEPTED_TYPES:
        if isinstance(column_type, sql_type):
            if isinstance(value, python_types):
                return value
            raise _invalid(attribute, value)
    return value


_ACCEPTED_TYPES: tuple[tuple[type[Any], tuple[type[Any], ...]], ...] = (
    (Uuid, (uuid.UUID,)),
    (DateTime, (datetime,)),
    (Date, (date,)),
    (Integer, (int,)),
    (Boolean, (bool,)),
    (String, ()),
)


def _invalid(attribute: InstrumentedAttribute[Any], value: Any) -> GatewayQueryError:
    return GatewayQueryError(f"invalid value {value!r} for column '{attribute.key}'")


def _parse_text(attribute: InstrumentedAttribute[Any], column_type: Any, value: str) -> Any:
    try:
        if isinstance(column_type, Uuid):
            return uuid.UUID(value)
        if isinstance(column_type, DateTime):
            return datetime.fromisoformat(value)
        if isinstance(column_type, Date):
            return date.fromisoformat(value)
        if isinstance(column_type, Integer):
            return int(value)
        if isinstance(column_type, Numeric):
            return _finite_decimal(attribute, value)
        if isinstance(column_type, Boolean):
            return value.lower() in {"true", "1", "t"}
    except (ValueError, InvalidOperation):
        raise _invalid(attribute, value)
    return value


def _finite_decimal(attribute: InstrumentedAttribute[Any], raw: str) -> Decimal:
    try:
        parsed = Decimal(raw)
    except InvalidOperation:
        raise _invalid(attribute, raw)
    # SQLite keeps numerics as doubles.
    if not parsed.is_finite() or not math.isfinite(float(parsed)):
        raise _invalid(attribute, raw)
    return parsed
