"""Hierarchy assembler — merges per-level source streams into one stream.

Output is always ordered province -> regency -> district -> village and,
within a level, in source emission order. Assembly is a single forward
pass: parent existence is not checked here (the bulk loader's referential
pass does that), so nothing is buffered.
"""

from collections.abc import Iterator
from datetime import datetime

from wilayah.errors import CompositionError
from wilayah.hierarchy.codes import PARENT_KIND, compose_full_code, derive_parent_codes
from wilayah.ingestion.source_reader import SourceReader, SourceRecord
from wilayah.models.common import utc_now
from wilayah.models.region import KIND_ORDER, Region, RegionKind


def build_region(record: SourceRecord, generated_at: datetime) -> Region:
    """Turn one source record into a Region with composed codes.

    Raises:
        CompositionError: On an empty local code or missing scope code.
    """
    if not record.local_code:
        msg = f"Empty local code for {record.kind.value} {record.name!r}"
        raise CompositionError(msg)

    parent_codes = derive_parent_codes(record.kind, *record.scope.codes)
    parent_kind = PARENT_KIND[record.kind]
    parent_full = parent_codes.for_kind(parent_kind) if parent_kind else None

    return Region(
        kind=record.kind,
        local_code=record.local_code,
        full_code=compose_full_code(parent_full, record.local_code),
        name=record.name,
        parent_codes=parent_codes,
        created_at=generated_at,
        updated_at=generated_at,
    )


class HierarchyAssembler:
    """Produce the canonical region stream from a SourceReader."""

    def __init__(self, reader: SourceReader, generated_at: datetime | None = None) -> None:
        self._reader = reader
        self._generated_at = generated_at

    @property
    def reader(self) -> SourceReader:
        return self._reader

    def assemble(self) -> Iterator[Region]:
        """Yield every region, all levels, in canonical order.

        All regions of one assembly share a single generation timestamp.
        """
        generated_at = self._generated_at or utc_now()
        for kind in KIND_ORDER:
            yield from self.assemble_kind(kind, generated_at=generated_at)

    def assemble_kind(
        self,
        kind: RegionKind,
        *,
        generated_at: datetime | None = None,
    ) -> Iterator[Region]:
        """Yield the regions of one level in source emission order."""
        stamp = generated_at or self._generated_at or utc_now()
        for record in self._reader.read(kind):
            yield build_region(record, stamp)

    def __iter__(self) -> Iterator[Region]:
        return self.assemble()
