from __future__ import annotations

import uuid
from dataclasses import dataclass, field


@dataclass(slots=True)
class AuthContext:
    """Identity every policy check and owner filter is evaluated against."""

    user_id: uuid.UUID
    correlation_id: str | None = None
    roles: list[str] = field(default_factory=list)

    @property
    def actor(self) -> str:
        return str(self.user_id)
