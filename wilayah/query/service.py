"""Region query service — hierarchy-scoped reads over the store.

Read-only and safe to run concurrently with other queries. Not
linearizable with an in-flight load generation.
"""

import asyncio
from collections.abc import Mapping

from wilayah.config.settings import get_settings
from wilayah.errors import InvalidArgument, NotFound, OperationCancelled
from wilayah.hierarchy.codes import PARENT_KIND, infer_kind
from wilayah.models.region import (
    KIND_ORDER,
    Hierarchy,
    Region,
    RegionFilter,
    RegionKind,
    SearchPage,
    SortKey,
)
from wilayah.repositories.regions import RegionRepository

# Filter field that holds the parent code for each child kind.
_PARENT_FILTER_FIELD = {
    RegionKind.REGENCY: "province_code",
    RegionKind.DISTRICT: "regency_full_code",
    RegionKind.VILLAGE: "district_full_code",
}


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        msg = "Query cancelled."
        raise OperationCancelled(msg)


class RegionQueryService:
    """Answer hierarchy-scoped and free-text queries."""

    def __init__(
        self,
        repository: RegionRepository,
        *,
        min_term_length: int | None = None,
        max_limit: int | None = None,
        code_lengths: Mapping[int, RegionKind] | None = None,
    ) -> None:
        settings = get_settings()
        self._repo = repository
        self._min_term_length = min_term_length or settings.SEARCH_MIN_TERM_LENGTH
        self._max_limit = max_limit or settings.SEARCH_MAX_LIMIT
        self._code_lengths = code_lengths

    async def by_kind(self, kind: RegionKind) -> list[Region]:
        """All regions of one kind, local code ascending."""
        return await self._repo.find(RegionFilter(kind=kind))

    async def children_of(self, parent_full_code: str, child_kind: RegionKind) -> list[Region]:
        """Regions of ``child_kind`` directly under ``parent_full_code``.

        Returns an empty list when the parent has no children or does not exist.
        """
        field = _PARENT_FILTER_FIELD.get(child_kind)
        if field is None:
            msg = f"{child_kind.value} has no parent level."
            raise InvalidArgument(msg)
        code = parent_full_code.strip()
        if not code:
            msg = "Parent code is required."
            raise InvalidArgument(msg)
        return await self._repo.find(RegionFilter(kind=child_kind, **{field: code}))

    async def search(
        self,
        term: str,
        kind: RegionKind | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
        sort: SortKey = SortKey.NAME,
        cancel: asyncio.Event | None = None,
    ) -> SearchPage:
        """Case-insensitive substring search on name.

        ``total`` counts every match before paging. Count and page are two
        reads and are not a consistent snapshot under concurrent loads.

        Raises:
            InvalidArgument: Term shorter than the minimum, or bad paging.
            OperationCancelled: ``cancel`` was set before a read.
        """
        cleaned = (term or "").strip()
        if len(cleaned) < self._min_term_length:
            msg = f"Search term must be at least {self._min_term_length} characters."
            raise InvalidArgument(msg, context={"term": term})
        return await self.find(
            RegionFilter(kind=kind, name_contains=cleaned),
            limit=limit, offset=offset, sort=sort, cancel=cancel,
        )

    async def find(
        self,
        flt: RegionFilter,
        *,
        limit: int = 100,
        offset: int = 0,
        sort: SortKey | None = SortKey.NAME,
        cancel: asyncio.Event | None = None,
    ) -> SearchPage:
        """Filtered, paged listing (no minimum term length)."""
        self._check_paging(limit, offset)
        _check_cancel(cancel)
        total = await self._repo.count(flt)
        _check_cancel(cancel)
        items = await self._repo.find(flt, sort=sort, limit=limit, skip=offset) if total else []
        return SearchPage(items=items, total=total, limit=limit, offset=offset)

    async def hierarchy_of(self, full_code: str) -> Hierarchy:
        """Resolve a region and its stored ancestors.

        Raises:
            InvalidCodeFormat: The code's shape matches no level.
            NotFound: No stored region has this code.
        """
        code = full_code.strip()
        kind = infer_kind(code, self._code_lengths)
        entity = await self._repo.get_by_full_code(kind, code)
        if entity is None:
            msg = f"No {kind.value} with code {code}."
            raise NotFound(msg, context={"full_code": code, "kind": kind.value})

        ancestors: dict[str, Region | None] = {}
        parent_kind = PARENT_KIND[kind]
        while parent_kind is not None:
            parent_code = entity.parent_codes.for_kind(parent_kind)
            ancestors[parent_kind.value] = (
                await self._repo.get_by_full_code(parent_kind, parent_code) if parent_code else None
            )
            parent_kind = PARENT_KIND[parent_kind]
        return Hierarchy(entity=entity, **ancestors)

    async def aggregate_counts(self) -> dict[str, int]:
        """Region count per kind (zero when absent) plus ``total``."""
        by_kind = await self._repo.count_by_kind()
        counts = {kind.value: by_kind.get(kind, 0) for kind in KIND_ORDER}
        counts["total"] = sum(counts.values())
        return counts

    def _check_paging(self, limit: int, offset: int) -> None:
        if not 1 <= limit <= self._max_limit:
            msg = f"limit must be between 1 and {self._max_limit}."
            raise InvalidArgument(msg, context={"limit": limit})
        if offset < 0:
            msg = "offset must not be negative."
            raise InvalidArgument(msg, context={"offset": offset})
