from __future__ import annotations

from threading import Lock

from app.platform.security.repository import BaseRepository


_REPOSITORIES: dict[str, BaseRepository] = {}
_REGISTRY_LOCK = Lock()


def register_repository(repository: BaseRepository) -> BaseRepository:
    """Expose a table through the gateway under its resource name."""

    with _REGISTRY_LOCK:
        _REPOSITORIES[repository.resource] = repository
    return repository


def get_repositories() -> dict[str, BaseRepository]:
    return dict(_REPOSITORIES)
