from app.platform.security.context import AuthContext
from app.platform.security.errors import ActionNotPermittedError, AuthorizationError, ForbiddenFieldError
from app.platform.security.fls import SERVER_MANAGED_COLUMNS, column_names, validate_fls_write, writable_columns
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import (
    apply_owner_filter,
    ensure_action_permitted,
    owner_loader_criteria,
    stamp_owner,
    validate_owner_write,
)
from app.platform.security.policies import (
    OWNER_COLUMN,
    POLICY_CATALOGUE,
    OwnerPolicyBackend,
    PolicyBackend,
    ResourceAction,
    RowPolicy,
    disable_rls_sql,
    enable_rls_sql,
    get_policy_backend,
    set_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ActionNotPermittedError",
    "ForbiddenFieldError",
    "SERVER_MANAGED_COLUMNS",
    "column_names",
    "writable_columns",
    "validate_fls_write",
    "BaseRepository",
    "apply_owner_filter",
    "ensure_action_permitted",
    "owner_loader_criteria",
    "stamp_owner",
    "validate_owner_write",
    "OWNER_COLUMN",
    "POLICY_CATALOGUE",
    "OwnerPolicyBackend",
    "PolicyBackend",
    "ResourceAction",
    "RowPolicy",
    "disable_rls_sql",
    "enable_rls_sql",
    "get_policy_backend",
    "set_policy_backend",
]
