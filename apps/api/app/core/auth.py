import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]

    @property
    def is_authenticated(self) -> bool:
        return self.sub != "anonymous"


def decode_subject(token: str) -> tuple[str, list[str]] | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if subject is None:
        return None
    roles = payload.get("roles", ["authenticated"])
    if not isinstance(roles, list):
        roles = ["authenticated"]
    return str(subject), [str(role) for role in roles]


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if not token:
        return AuthUser(sub="anonymous", roles=["anon"])

    decoded = decode_subject(token)
    if decoded is None:
        return AuthUser(sub="anonymous", roles=["anon"])

    subject, roles = decoded
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=roles)


async def require_authenticated_user(request: Request) -> uuid.UUID:
    """Resolve the session identity; every CRM row is owned by this id."""

    user = await get_current_user(request)
    if not user.is_authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    try:
        return uuid.UUID(user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token subject is not a user id")
