"""enable row level security

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 00:02:00
"""

from collections.abc import Sequence

from alembic import op

from app.platform.security.policies import POLICY_CATALOGUE, disable_rls_sql, enable_rls_sql


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table in POLICY_CATALOGUE:
        for statement in enable_rls_sql(table):
            op.execute(statement)


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table in reversed(list(POLICY_CATALOGUE)):
        for statement in disable_rls_sql(table):
            op.execute(statement)
