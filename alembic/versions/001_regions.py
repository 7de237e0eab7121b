"""Region table: all four hierarchy levels in one table.

On PostgreSQL a pg_trgm GIN index on lower(name) serves the substring
search (lower(name) LIKE '%term%'); the plain btree ix_regions_name only
helps prefix matches and ordering. Other dialects get the btree alone.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "regions",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("level", sa.Integer, nullable=False),
        sa.Column("local_code", sa.String(20), nullable=False),
        sa.Column("full_code", sa.String(40), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("province_code", sa.String(20), nullable=True),
        sa.Column("regency_local_code", sa.String(20), nullable=True),
        sa.Column("regency_full_code", sa.String(40), nullable=True),
        sa.Column("district_local_code", sa.String(20), nullable=True),
        sa.Column("district_full_code", sa.String(40), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("kind", "full_code", name="uq_regions_kind_full_code"),
    )
    op.create_index("ix_regions_kind", "regions", ["kind"])
    op.create_index("ix_regions_name", "regions", ["name"])
    op.create_index("ix_regions_kind_province", "regions", ["kind", "province_code"])
    op.create_index("ix_regions_kind_regency", "regions", ["kind", "regency_full_code"])
    op.create_index("ix_regions_kind_district", "regions", ["kind", "district_full_code"])

    if op.get_context().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
        op.create_index(
            "ix_regions_name_trgm",
            "regions",
            [sa.text("lower(name) gin_trgm_ops")],
            postgresql_using="gin",
        )


def downgrade() -> None:
    if op.get_context().dialect.name == "postgresql":
        op.drop_index("ix_regions_name_trgm", table_name="regions")
    op.drop_index("ix_regions_kind_district", table_name="regions")
    op.drop_index("ix_regions_kind_regency", table_name="regions")
    op.drop_index("ix_regions_kind_province", table_name="regions")
    op.drop_index("ix_regions_name", table_name="regions")
    op.drop_index("ix_regions_kind", table_name="regions")
    op.drop_table("regions")
