"""Region repository — the store contract over the ``regions`` table.

Repositories take an AsyncSession and never commit(); the caller owns the
transaction (request Unit-of-Work for queries, one transaction per batch
for the bulk loader).
"""

from collections.abc import AsyncIterator, Sequence
from datetime import timezone

from sqlalchemy import ColumnElement, and_, delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from wilayah.db.tables import RegionRow
from wilayah.hierarchy.codes import PARENT_KIND
from wilayah.models.load import OrphanEntity
from wilayah.models.region import ParentCodes, Region, RegionFilter, RegionKind, SortKey

# Denormalized column holding each kind's immediate-parent full code.
PARENT_CODE_COLUMN = {
    RegionKind.REGENCY: RegionRow.province_code,
    RegionKind.DISTRICT: RegionRow.regency_full_code,
    RegionKind.VILLAGE: RegionRow.district_full_code,
}


def region_to_values(region: Region) -> dict:
    """Flatten a Region into ``regions`` column values."""
    codes = region.parent_codes
    return {
        "kind": region.kind.value,
        "level": region.kind.level,
        "local_code": region.local_code,
        "full_code": region.full_code,
        "name": region.name,
        "province_code": codes.province_code,
        "regency_local_code": codes.regency_local_code,
        "regency_full_code": codes.regency_full_code,
        "district_local_code": codes.district_local_code,
        "district_full_code": codes.district_full_code,
        "created_at": region.created_at,
        "updated_at": region.updated_at,
    }


def row_to_region(row: RegionRow) -> Region:
    """Rebuild a Region from a stored row."""
    return Region(
        kind=RegionKind(row.kind),
        local_code=row.local_code,
        full_code=row.full_code,
        name=row.name,
        parent_codes=ParentCodes(
            province_code=row.province_code,
            regency_local_code=row.regency_local_code,
            regency_full_code=row.regency_full_code,
            district_local_code=row.district_local_code,
            district_full_code=row.district_full_code,
        ),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _aware(value):
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _conditions(flt: RegionFilter | None) -> list[ColumnElement[bool]]:
    if flt is None:
        return []
    conditions: list[ColumnElement[bool]] = []
    if flt.kind is not None:
        conditions.append(RegionRow.kind == flt.kind.value)
    if flt.province_code is not None:
        conditions.append(RegionRow.province_code == flt.province_code)
    if flt.regency_full_code is not None:
        conditions.append(RegionRow.regency_full_code == flt.regency_full_code)
    if flt.district_full_code is not None:
        conditions.append(RegionRow.district_full_code == flt.district_full_code)
    if flt.name_contains:
        pattern = f"%{_escape_like(flt.name_contains.lower())}%"
        conditions.append(func.lower(RegionRow.name).like(pattern, escape="\\"))
    return conditions


def _order_by(sort: SortKey | None) -> list:
    if sort == SortKey.NAME:
        return [RegionRow.name, RegionRow.full_code, RegionRow.row_id]
    if sort == SortKey.CODE:
        return [RegionRow.full_code, RegionRow.level, RegionRow.row_id]
    if sort == SortKey.KIND_NAME:
        return [RegionRow.level, RegionRow.name, RegionRow.row_id]
    return [RegionRow.level, RegionRow.local_code, RegionRow.row_id]


class RegionRepository:
    """Find/insert/delete/aggregate over stored regions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- Writes ---

    async def insert_many(self, regions: Sequence[Region]) -> int:
        """Bulk insert in a single statement. Returns the number of rows."""
        if not regions:
            return 0
        await self._session.execute(
            insert(RegionRow),
            [region_to_values(r) for r in regions],
        )
        return len(regions)

    async def delete_many(self, kind: RegionKind | None = None) -> int:
        """Delete all regions (or all of one kind). Returns rows deleted."""
        stmt = delete(RegionRow)
        if kind is not None:
            stmt = stmt.where(RegionRow.kind == kind.value)
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    # --- Reads ---

    async def find(
        self,
        flt: RegionFilter | None = None,
        *,
        sort: SortKey | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[Region]:
        stmt = select(RegionRow).where(*_conditions(flt)).order_by(*_order_by(sort))
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [row_to_region(row) for row in result.scalars().all()]

    async def count(self, flt: RegionFilter | None = None) -> int:
        stmt = select(func.count()).select_from(RegionRow).where(*_conditions(flt))
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def count_by_kind(self) -> dict[RegionKind, int]:
        """Group-by-kind aggregate; kinds with no rows are omitted."""
        result = await self._session.execute(
            select(RegionRow.kind, func.count()).group_by(RegionRow.kind)
        )
        return {RegionKind(kind): int(n) for kind, n in result.all()}

    async def get_by_full_code(self, kind: RegionKind, full_code: str) -> Region | None:
        result = await self._session.execute(
            select(RegionRow).where(
                RegionRow.kind == kind.value,
                RegionRow.full_code == full_code,
            )
        )
        row = result.scalars().first()
        return row_to_region(row) if row is not None else None

    async def iter_all(self, page_size: int = 1000) -> AsyncIterator[Region]:
        """Yield every stored region in hierarchy order, one page at a time."""
        last: tuple[int, int] | None = None
        while True:
            stmt = select(RegionRow).order_by(RegionRow.level, RegionRow.row_id).limit(page_size)
            if last is not None:
                level, row_id = last
                stmt = stmt.where(
                    (RegionRow.level > level)
                    | and_(RegionRow.level == level, RegionRow.row_id > row_id)
                )
            rows = (await self._session.execute(stmt)).scalars().all()
            if not rows:
                return
            for row in rows:
                yield row_to_region(row)
            last = (rows[-1].level, rows[-1].row_id)

    # --- Referential checks ---

    def _orphan_query(self, kind: RegionKind):
        parent_kind = PARENT_KIND[kind]
        parent = aliased(RegionRow)
        parent_code = PARENT_CODE_COLUMN[kind]
        exists_parent = (
            select(parent.row_id)
            .where(parent.kind == parent_kind.value, parent.full_code == parent_code)
            .exists()
        )
        return parent_code, (RegionRow.kind == kind.value) & ~exists_parent

    async def count_orphans(self, kind: RegionKind) -> int:
        """Count regions of ``kind`` whose immediate parent is not stored."""
        _, condition = self._orphan_query(kind)
        result = await self._session.execute(
            select(func.count()).select_from(RegionRow).where(condition)
        )
        return int(result.scalar_one())

    async def find_orphans(self, kind: RegionKind, limit: int | None = None) -> list[OrphanEntity]:
        parent_code, condition = self._orphan_query(kind)
        stmt = (
            select(RegionRow.full_code, parent_code)
            .where(condition)
            .order_by(RegionRow.row_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [
            OrphanEntity(
                kind=kind,
                full_code=full_code,
                parent_kind=PARENT_KIND[kind],
                parent_full_code=parent_full_code,
            )
            for full_code, parent_full_code in result.all()
        ]
