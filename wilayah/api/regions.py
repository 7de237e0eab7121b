"""FastAPI region endpoints.

GET /provinces                                  — all provinces
GET /regencies?provinceCode=                    — regencies of a province
GET /districts?regencyCode=                     — districts of a regency
GET /villages?districtCode=                     — villages of a district
GET /search?q=&kind=&limit=&offset=&sort=       — name search, paged
GET /regions?kind=&provinceCode=&...            — generic filtered listing
GET /hierarchy/{fullCode}                       — region plus ancestors
GET /stats                                      — counts per kind

Thin mapping over RegionQueryService; errors are rendered by the
WilayahError handler registered in main.
"""

from fastapi import APIRouter, Depends, Query

from wilayah.api.dependencies import get_query_service
from wilayah.config.settings import get_settings
from wilayah.errors import InvalidArgument
from wilayah.models.common import WilayahBase
from wilayah.models.region import (
    KIND_ORDER,
    Region,
    RegionFilter,
    RegionKind,
    SearchPage,
    SortKey,
)
from wilayah.query.service import RegionQueryService

router = APIRouter(tags=["regions"])

_DEFAULT_LIMIT = get_settings().SEARCH_DEFAULT_LIMIT


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RegionOut(WilayahBase):
    kind: RegionKind
    local_code: str
    full_code: str
    name: str
    province_code: str | None = None
    regency_local_code: str | None = None
    district_local_code: str | None = None
    regency_full_code: str | None = None
    district_full_code: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_region(cls, region: Region) -> "RegionOut":
        codes = region.parent_codes
        return cls(
            kind=region.kind,
            local_code=region.local_code,
            full_code=region.full_code,
            name=region.name,
            province_code=codes.province_code,
            regency_local_code=codes.regency_local_code,
            district_local_code=codes.district_local_code,
            regency_full_code=codes.regency_full_code,
            district_full_code=codes.district_full_code,
            created_at=region.created_at.isoformat(),
            updated_at=region.updated_at.isoformat(),
        )


class RegionListResponse(WilayahBase):
    success: bool = True
    data: list[RegionOut]


class Pagination(WilayahBase):
    total: int
    limit: int
    offset: int
    has_more: bool


class PagedRegionResponse(WilayahBase):
    success: bool = True
    data: list[RegionOut]
    pagination: Pagination


class HierarchyResponse(WilayahBase):
    success: bool = True
    data: dict[str, RegionOut | None]


class StatsResponse(WilayahBase):
    success: bool = True
    data: dict[str, int]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _list(regions: list[Region]) -> RegionListResponse:
    return RegionListResponse(data=[RegionOut.from_region(r) for r in regions])


def _paged(page: SearchPage) -> PagedRegionResponse:
    return PagedRegionResponse(
        data=[RegionOut.from_region(r) for r in page.items],
        pagination=Pagination(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        ),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/provinces", response_model=RegionListResponse)
async def list_provinces(
    svc: RegionQueryService = Depends(get_query_service),
) -> RegionListResponse:
    return _list(await svc.by_kind(RegionKind.PROVINCE))


@router.get("/regencies", response_model=RegionListResponse)
async def list_regencies(
    province_code: str = Query(..., alias="provinceCode", min_length=1),
    svc: RegionQueryService = Depends(get_query_service),
) -> RegionListResponse:
    return _list(await svc.children_of(province_code, RegionKind.REGENCY))


@router.get("/districts", response_model=RegionListResponse)
async def list_districts(
    regency_code: str = Query(..., alias="regencyCode", min_length=1),
    svc: RegionQueryService = Depends(get_query_service),
) -> RegionListResponse:
    return _list(await svc.children_of(regency_code, RegionKind.DISTRICT))


@router.get("/villages", response_model=RegionListResponse)
async def list_villages(
    district_code: str = Query(..., alias="districtCode", min_length=1),
    svc: RegionQueryService = Depends(get_query_service),
) -> RegionListResponse:
    return _list(await svc.children_of(district_code, RegionKind.VILLAGE))


@router.get("/search", response_model=PagedRegionResponse)
async def search_regions(
    q: str = Query(""),
    kind: RegionKind | None = Query(None),
    limit: int = Query(_DEFAULT_LIMIT),
    offset: int = Query(0),
    sort: str = Query(SortKey.NAME.value),
    svc: RegionQueryService = Depends(get_query_service),
) -> PagedRegionResponse:
    """Name search; terms under the minimum length are rejected with 400."""
    page = await svc.search(q, kind, limit=limit, offset=offset, sort=_sort_key(sort))
    return _paged(page)


@router.get("/regions", response_model=PagedRegionResponse)
async def filter_regions(
    kind: RegionKind | None = Query(None),
    province_code: str | None = Query(None, alias="provinceCode"),
    regency_code: str | None = Query(None, alias="regencyCode"),
    district_code: str | None = Query(None, alias="districtCode"),
    q: str | None = Query(None),
    limit: int = Query(_DEFAULT_LIMIT),
    offset: int = Query(0),
    sort: str = Query(SortKey.NAME.value),
    svc: RegionQueryService = Depends(get_query_service),
) -> PagedRegionResponse:
    flt = RegionFilter(
        kind=kind,
        province_code=province_code or None,
        regency_full_code=regency_code or None,
        district_full_code=district_code or None,
        name_contains=(q or "").strip() or None,
    )
    page = await svc.find(flt, limit=limit, offset=offset, sort=_sort_key(sort))
    return _paged(page)


@router.get("/hierarchy/{full_code}", response_model=HierarchyResponse)
async def get_hierarchy(
    full_code: str,
    svc: RegionQueryService = Depends(get_query_service),
) -> HierarchyResponse:
    hierarchy = await svc.hierarchy_of(full_code)
    data: dict[str, RegionOut | None] = {"self": RegionOut.from_region(hierarchy.entity)}
    for kind in KIND_ORDER[: hierarchy.entity.kind.level - 1]:
        ancestor = getattr(hierarchy, kind.value)
        data[kind.value] = RegionOut.from_region(ancestor) if ancestor is not None else None
    return HierarchyResponse(data=data)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    svc: RegionQueryService = Depends(get_query_service),
) -> StatsResponse:
    return StatsResponse(data=await svc.aggregate_counts())


def _sort_key(value: str) -> SortKey:
    try:
        return SortKey(value)
    except ValueError as exc:
        msg = f"Unknown sort key {value!r}; expected name, code or kind+name."
        raise InvalidArgument(msg) from exc
