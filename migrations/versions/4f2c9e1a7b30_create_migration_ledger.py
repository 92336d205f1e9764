"""create migration_ledger

Revision ID: 4f2c9e1a7b30
Revises:
Create Date: 2026-10-18 09:12:44.501233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2c9e1a7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    One row per migration unit ever applied to this database.
    A unit without a row is pending.
    """
    op.create_table(
        "migration_ledger",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("identifier", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'applied', 'failed')", name="ck_migration_ledger_status"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_migration_ledger_identifier", "migration_ledger", ["identifier"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_migration_ledger_identifier", table_name="migration_ledger")
    op.drop_table("migration_ledger")
