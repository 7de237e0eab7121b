"""Region exporter — tabular and line-delimited interchange artifacts.

Every row carries the full field set defined once in EXPORT_FIELDS, so
per-kind and combined artifacts share one uniform schema (empty string for
absent optional fields). CSV quoting follows the standard dialect.

Output (per format): <out>/<kind>.<ext> and <out>/regions.<ext>
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import IO

from wilayah.models.region import KIND_ORDER, ParentCodes, Region, RegionKind
from wilayah.repositories.regions import RegionRepository

logger = logging.getLogger(__name__)

EXPORT_FIELDS: tuple[str, ...] = (
    "kind",
    "localCode",
    "fullCode",
    "name",
    "provinceCode",
    "regencyLocalCode",
    "districtLocalCode",
    "regencyFullCode",
    "districtFullCode",
    "createdAt",
    "updatedAt",
)

COMBINED_STEM = "regions"


class ExportFormat(StrEnum):
    CSV = "csv"
    JSONL = "jsonl"
    JSON = "json"


# ---------------------------------------------------------------------------
# Row schema
# ---------------------------------------------------------------------------


def region_to_row(region: Region) -> dict[str, str]:
    """Flatten a region into one uniform export row."""
    codes = region.parent_codes
    return {
        "kind": region.kind.value,
        "localCode": region.local_code,
        "fullCode": region.full_code,
        "name": region.name,
        "provinceCode": codes.province_code or "",
        "regencyLocalCode": codes.regency_local_code or "",
        "districtLocalCode": codes.district_local_code or "",
        "regencyFullCode": codes.regency_full_code or "",
        "districtFullCode": codes.district_full_code or "",
        "createdAt": region.created_at.isoformat(),
        "updatedAt": region.updated_at.isoformat(),
    }


def row_to_region(row: dict[str, str]) -> Region:
    """Inverse of region_to_row. Empty strings become None.

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    missing = [name for name in EXPORT_FIELDS if name not in row]
    if missing:
        msg = f"Export row is missing fields: {', '.join(missing)}"
        raise ValueError(msg)

    def opt(name: str) -> str | None:
        return row[name] or None

    return Region(
        kind=RegionKind(row["kind"]),
        local_code=row["localCode"],
        full_code=row["fullCode"],
        name=row["name"],
        parent_codes=ParentCodes(
            province_code=opt("provinceCode"),
            regency_local_code=opt("regencyLocalCode"),
            regency_full_code=opt("regencyFullCode"),
            district_local_code=opt("districtLocalCode"),
            district_full_code=opt("districtFullCode"),
        ),
        created_at=datetime.fromisoformat(row["createdAt"]),
        updated_at=datetime.fromisoformat(row["updatedAt"]),
    )


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


class _CsvSink:
    def __init__(self, handle: IO[str]) -> None:
        self._writer = csv.DictWriter(handle, fieldnames=EXPORT_FIELDS, lineterminator="\n")
        self._writer.writeheader()

    def write(self, row: dict[str, str]) -> None:
        self._writer.writerow(row)

    def close(self) -> None:
        pass


class _JsonlSink:
    def __init__(self, handle: IO[str]) -> None:
        self._handle = handle

    def write(self, row: dict[str, str]) -> None:
        self._handle.write(json.dumps(row, ensure_ascii=False))
        self._handle.write("\n")

    def close(self) -> None:
        pass


class _JsonArraySink:
    def __init__(self, handle: IO[str]) -> None:
        self._handle = handle
        self._first = True
        handle.write("[")

    def write(self, row: dict[str, str]) -> None:
        self._handle.write("\n  " if self._first else ",\n  ")
        self._handle.write(json.dumps(row, ensure_ascii=False))
        self._first = False

    def close(self) -> None:
        self._handle.write("\n]\n" if not self._first else "]\n")


_Sink = _CsvSink | _JsonlSink | _JsonArraySink

_SINKS: dict[ExportFormat, type[_Sink]] = {
    ExportFormat.CSV: _CsvSink,
    ExportFormat.JSONL: _JsonlSink,
    ExportFormat.JSON: _JsonArraySink,
}


@dataclass
class ExportSummary:
    """What an export wrote."""

    counts_by_kind: dict[RegionKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in KIND_ORDER}
    )
    files: list[Path] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts_by_kind.values())

    def to_dict(self) -> dict:
        return {
            "counts_by_kind": {k.value: v for k, v in self.counts_by_kind.items()},
            "total": self.total,
            "files": [str(p) for p in self.files],
        }


class ExportWriter:
    """Single-pass writer for per-kind and combined artifacts.

    Use as a context manager; files are opened lazily (a kind with no
    regions gets no per-kind file) and closed on exit.
    """

    def __init__(
        self,
        out_dir: str | Path,
        formats: Iterable[ExportFormat] = (ExportFormat.CSV, ExportFormat.JSONL),
        *,
        per_kind: bool = True,
        combined: bool = True,
    ) -> None:
        self._out_dir = Path(out_dir)
        self._formats = [ExportFormat(f) for f in formats]
        if not self._formats:
            msg = "At least one export format is required."
            raise ValueError(msg)
        if not (per_kind or combined):
            msg = "Nothing to export: per_kind and combined are both disabled."
            raise ValueError(msg)
        self._per_kind = per_kind
        self._combined = combined
        self._stack = ExitStack()
        self._sinks: dict[tuple[str, ExportFormat], _Sink] = {}
        self.summary = ExportSummary()

    def __enter__(self) -> ExportWriter:
        self._out_dir.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, *exc_info) -> None:
        for sink in self._sinks.values():
            sink.close()
        self._stack.close()
        logger.info("Exported %d regions to %s", self.summary.total, self._out_dir)

    def write(self, region: Region) -> None:
        row = region_to_row(region)
        stems = []
        if self._per_kind:
            stems.append(region.kind.value)
        if self._combined:
            stems.append(COMBINED_STEM)
        for stem in stems:
            for fmt in self._formats:
                self._sink(stem, fmt).write(row)
        self.summary.counts_by_kind[region.kind] += 1

    def _sink(self, stem: str, fmt: ExportFormat) -> _Sink:
        key = (stem, fmt)
        sink = self._sinks.get(key)
        if sink is None:
            path = self._out_dir / f"{stem}.{fmt.value}"
            handle = self._stack.enter_context(path.open("w", encoding="utf-8", newline=""))
            sink = _SINKS[fmt](handle)
            self._sinks[key] = sink
            self.summary.files.append(path)
        return sink


def export_regions(
    stream: Iterable[Region],
    out_dir: str | Path,
    formats: Iterable[ExportFormat] = (ExportFormat.CSV, ExportFormat.JSONL),
    *,
    per_kind: bool = True,
    combined: bool = True,
) -> ExportSummary:
    """Export an assembled region stream."""
    with ExportWriter(out_dir, formats, per_kind=per_kind, combined=combined) as writer:
        for region in stream:
            writer.write(region)
    return writer.summary


async def export_from_store(
    repository: RegionRepository,
    out_dir: str | Path,
    formats: Iterable[ExportFormat] = (ExportFormat.CSV, ExportFormat.JSONL),
    *,
    per_kind: bool = True,
    combined: bool = True,
    page_size: int = 1000,
) -> ExportSummary:
    """Export every stored region in hierarchy order."""
    regions: AsyncIterator[Region] = repository.iter_all(page_size=page_size)
    with ExportWriter(out_dir, formats, per_kind=per_kind, combined=combined) as writer:
        async for region in regions:
            writer.write(region)
    return writer.summary


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


def read_jsonl(path: str | Path) -> Iterator[Region]:
    """Parse a line-delimited export back into regions (blank lines skipped)."""
    with Path(path).open(encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield row_to_region(json.loads(line))


def read_csv(path: str | Path) -> Iterator[Region]:
    """Parse a CSV export back into regions."""
    with Path(path).open(encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            yield row_to_region(row)
