from app.platform.gateway.errors import (
    GatewayError,
    GatewayQueryError,
    ImmutableTableError,
    ReferenceNotFoundError,
)
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.query import Order, parse_order
from app.platform.gateway.registry import get_repositories, register_repository

__all__ = [
    "DataGateway",
    "GatewayError",
    "GatewayQueryError",
    "ImmutableTableError",
    "Order",
    "ReferenceNotFoundError",
    "get_repositories",
    "parse_order",
    "register_repository",
]
