"""SQLAlchemy ORM table models for wilayah.

One table holds every hierarchy level. ``row_id`` is the storage-level
surrogate assigned at insert; ``full_code`` is the canonical key and is
unique per kind within a generation.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from wilayah.db.session import Base


class RegionRow(Base):
    __tablename__ = "regions"
    __table_args__ = (
        UniqueConstraint("kind", "full_code", name="uq_regions_kind_full_code"),
        Index("ix_regions_kind_province", "kind", "province_code"),
        Index("ix_regions_kind_regency", "kind", "regency_full_code"),
        Index("ix_regions_kind_district", "kind", "district_full_code"),
    )

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    local_code: Mapped[str] = mapped_column(String(20), nullable=False)
    full_code: Mapped[str] = mapped_column(String(40), nullable=False)
    # Substring search on PostgreSQL uses ix_regions_name_trgm from the
    # migration; this btree covers ordering and prefix matches.
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    province_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    regency_local_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    regency_full_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    district_local_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    district_full_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
