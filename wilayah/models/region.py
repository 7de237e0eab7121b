"""Region models: one entity type for all four hierarchy levels.

Region is produced transiently by the assembler, persisted by the bulk
loader and returned by the query service. Absent ancestor codes are None.
"""

from enum import StrEnum

from pydantic import Field

from wilayah.models.common import UTCTimestamp, WilayahBase


class RegionKind(StrEnum):
    """Administrative hierarchy level, top to bottom."""

    PROVINCE = "province"
    REGENCY = "regency"
    DISTRICT = "district"
    VILLAGE = "village"

    @property
    def level(self) -> int:
        """1 for province down to 4 for village."""
        return KIND_ORDER.index(self) + 1


KIND_ORDER: tuple[RegionKind, ...] = (
    RegionKind.PROVINCE,
    RegionKind.REGENCY,
    RegionKind.DISTRICT,
    RegionKind.VILLAGE,
)


class SortKey(StrEnum):
    """Sort orders supported by search and filtered listings."""

    NAME = "name"
    CODE = "code"
    KIND_NAME = "kind_name"

    @classmethod
    def _missing_(cls, value: object) -> "SortKey | None":
        # Spellings used by the public query string. An unencoded "+" in
        # "kind+name" arrives as a space.
        aliases = {
            "kind+name": cls.KIND_NAME,
            "kind name": cls.KIND_NAME,
            "type": cls.KIND_NAME,
            "kind": cls.KIND_NAME,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


class ParentCodes(WilayahBase, frozen=True):
    """Ancestor codes denormalized onto a region for join-free filtering."""

    province_code: str | None = None
    regency_local_code: str | None = None
    regency_full_code: str | None = None
    district_local_code: str | None = None
    district_full_code: str | None = None

    def for_kind(self, kind: RegionKind) -> str | None:
        """Return the full code of the ancestor at ``kind``."""
        if kind == RegionKind.PROVINCE:
            return self.province_code
        if kind == RegionKind.REGENCY:
            return self.regency_full_code
        if kind == RegionKind.DISTRICT:
            return self.district_full_code
        return None


class Region(WilayahBase, frozen=True):
    """One administrative region at any level."""

    kind: RegionKind
    local_code: str = Field(..., min_length=1)
    full_code: str = Field(..., min_length=1)
    name: str
    parent_codes: ParentCodes = Field(default_factory=ParentCodes)
    created_at: UTCTimestamp
    updated_at: UTCTimestamp

    @property
    def parent_kind(self) -> RegionKind | None:
        if self.kind == RegionKind.PROVINCE:
            return None
        return KIND_ORDER[self.kind.level - 2]

    @property
    def parent_full_code(self) -> str | None:
        """Full code of the immediate parent, None for provinces."""
        parent_kind = self.parent_kind
        if parent_kind is None:
            return None
        return self.parent_codes.for_kind(parent_kind)


class RegionFilter(WilayahBase, frozen=True):
    """Equality filters over the denormalized codes plus a name substring."""

    kind: RegionKind | None = None
    province_code: str | None = None
    regency_full_code: str | None = None
    district_full_code: str | None = None
    name_contains: str | None = None


class SearchPage(WilayahBase, frozen=True):
    """One page of results plus the total match count before paging."""

    items: list[Region]
    total: int = Field(..., ge=0)
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.total > self.offset + self.limit


class Hierarchy(WilayahBase, frozen=True):
    """A region together with the ancestors found in the store."""

    entity: Region = Field(..., alias="self")
    province: Region | None = None
    regency: Region | None = None
    district: Region | None = None
