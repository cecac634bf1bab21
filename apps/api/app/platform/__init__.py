from app.platform.security.context import AuthContext
from app.platform.security.errors import ActionNotPermittedError, AuthorizationError, ForbiddenFieldError
from app.platform.security.repository import BaseRepository
from app.platform.security.policies import (
    OwnerPolicyBackend,
    PolicyBackend,
    ResourceAction,
    get_policy_backend,
    set_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ActionNotPermittedError",
    "ForbiddenFieldError",
    "BaseRepository",
    "OwnerPolicyBackend",
    "PolicyBackend",
    "ResourceAction",
    "get_policy_backend",
    "set_policy_backend",
]
