from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for row-ownership and column policy failures."""


class ForbiddenFieldError(AuthorizationError):
    """Raised when a payload writes columns the caller may not set."""

    def __init__(self, resource: str, fields: list[str]) -> None:
        self.resource = resource
        self.fields = sorted(set(fields))
        super().__init__(f"Forbidden fields for resource '{resource}': {', '.join(self.fields)}")


class ActionNotPermittedError(AuthorizationError):
    """Raised when a table carries no policy at all for the requested action."""

    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"'{action}' is not permitted on '{resource}'")
