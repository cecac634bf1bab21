from __future__ import annotations

from typing import Any, ClassVar

from sqlalchemy import inspect
from sqlalchemy.orm import selectinload

from app.platform.security.context import AuthContext
from app.platform.security.fls import column_names, validate_fls_write
from app.platform.security.policies import ResourceAction
from app.platform.security.rls import (
    ScopedStatement,
    apply_owner_filter,
    ensure_action_permitted,
    owner_loader_criteria,
    stamp_owner,
    validate_owner_write,
)


class BaseRepository:
    """Owner-scoped access to one table.

    Subclasses name the table (``resource``), its mapped class, the relations a
    read may embed and the order rows come back in when the caller gives none.
    """

    resource: ClassVar[str] = ""
    model: ClassVar[type[Any]]
    embeds: ClassVar[dict[str, str]] = {}
    default_order: ClassVar[tuple[Any, ...]] = ()

    def ensure_permitted(self, ctx: AuthContext, action: ResourceAction) -> None:
        ensure_action_permitted(self.resource, action, ctx)

    def apply_scope_query(
        self,
        query: ScopedStatement,
        ctx: AuthContext,
        *,
        action: ResourceAction = ResourceAction.SELECT,
    ) -> ScopedStatement:
        return apply_owner_filter(query, self.model, ctx, action=action)

    def embed_options(self, names: tuple[str, ...], ctx: AuthContext) -> list[Any]:
        if not names:
            return []
        options: list[Any] = [selectinload(getattr(self.model, self.embeds[name])) for name in names]
        options.extend(owner_loader_criteria(self.embedded_models(names), ctx))
        return options

    def embedded_models(self, names: tuple[str, ...]) -> list[type[Any]]:
        relationships = inspect(self.model).relationships
        return [relationships[self.embeds[name]].mapper.class_ for name in names]

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        action: ResourceAction,
    ) -> dict[str, Any]:
        validate_fls_write(self.resource, self.model, payload, ctx, action=action.value)
        if action == ResourceAction.INSERT:
            return stamp_owner(self.resource, payload, ctx)
        validate_owner_write(self.resource, payload, ctx, action=action)
        return dict(payload)

    def reference_targets(self) -> dict[str, str]:
        """Foreign key column -> referenced table."""

        return {
            foreign_key.parent.name: foreign_key.column.table.name
            for foreign_key in self.model.__table__.foreign_keys
        }

    def columns(self) -> set[str]:
        return column_names(self.model)

    def to_row(self, record: Any, embed: tuple[str, ...] = ()) -> dict[str, Any]:
        row = {name: getattr(record, name) for name in sorted(self.columns())}
        for name in embed:
            related = getattr(record, self.embeds[name])
            row[name] = None if related is None else {
                attribute.key: getattr(related, attribute.key) for attribute in inspect(related).mapper.column_attrs
            }
        return row
