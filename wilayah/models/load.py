"""Load report models produced by the bulk loader.

A report is always produced, including after partial failure or
cancellation. It never collapses to a bare success flag.
"""

from enum import StrEnum

from pydantic import Field, computed_field

from wilayah.models.common import UTCTimestamp, UUIDv7, WilayahBase, new_uuid7, utc_now
from wilayah.models.region import KIND_ORDER, RegionKind


class LoadStatus(StrEnum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    INCOMPLETE = "incomplete"


class SourceIssue(WilayahBase, frozen=True):
    """A source unit skipped by the reader."""

    kind: RegionKind
    unit: str
    error: str
    message: str


class BatchFailure(WilayahBase, frozen=True):
    """A rejected batch and the code range it covered."""

    batch_index: int
    kind: RegionKind
    first_code: str
    last_code: str
    size: int
    error: str


class OrphanEntity(WilayahBase, frozen=True):
    """A stored region whose immediate parent is missing from the store."""

    kind: RegionKind
    full_code: str
    parent_kind: RegionKind
    parent_full_code: str | None


def _zero_counts() -> dict[RegionKind, int]:
    return {kind: 0 for kind in KIND_ORDER}


class LoadReport(WilayahBase):
    """Accounting for one load generation."""

    generation_id: UUIDv7 = Field(default_factory=new_uuid7)
    inserted_by_kind: dict[RegionKind, int] = Field(default_factory=_zero_counts)
    cleared: int = 0
    skipped: int = 0
    source_issues: list[SourceIssue] = Field(default_factory=list)
    errors: list[BatchFailure] = Field(default_factory=list)
    orphan_count: int = 0
    orphans: list[OrphanEntity] = Field(default_factory=list)
    cancelled: bool = False
    aborted: bool = False
    started_at: UTCTimestamp = Field(default_factory=utc_now)
    finished_at: UTCTimestamp | None = None
    duration_ms: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_inserted(self) -> int:
        return sum(self.inserted_by_kind.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed_records(self) -> int:
        return sum(f.size for f in self.errors)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> LoadStatus:
        if self.cancelled or self.aborted:
            return LoadStatus.INCOMPLETE
        if self.errors or self.orphan_count or self.skipped:
            return LoadStatus.PARTIAL
        return LoadStatus.COMPLETE

    def finish(self) -> None:
        """Stamp the finish time and duration."""
        self.finished_at = utc_now()
        self.duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)
