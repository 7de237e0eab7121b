"""Per-level source reader.

Reads the raw JSON source tree (one unit per province for regencies, per
province+regency for districts, per province+regency+district for
villages) and yields one SourceRecord per leaf entry.

Each unit's scope is parsed once from its file name into a typed scope
descriptor; nothing downstream re-derives it from naming conventions.
A unit that cannot be opened or parsed is skipped and recorded in
``SourceReader.issues``; a read never raises for a single bad unit.

Input:  <root>/provinsi/provinsi.json
        <root>/kabupaten_kota/kab-<p>.json
        <root>/kecamatan/kec-<p>-<r>.json
        <root>/kelurahan_desa/keldesa-<p>-<r>-<d>.json
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from wilayah.errors import MalformedSourceUnit, SourceUnavailable, WilayahError
from wilayah.models.load import SourceIssue
from wilayah.models.region import RegionKind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scope descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NationalScope:
    """Scope of the province unit (no parent)."""

    @property
    def codes(self) -> tuple[str | None, str | None, str | None]:
        return (None, None, None)


@dataclass(frozen=True)
class ProvinceScope:
    """Scope of a regency unit."""

    province_code: str

    @property
    def codes(self) -> tuple[str | None, str | None, str | None]:
        return (self.province_code, None, None)


@dataclass(frozen=True)
class RegencyScope:
    """Scope of a district unit."""

    province_code: str
    regency_code: str

    @property
    def codes(self) -> tuple[str | None, str | None, str | None]:
        return (self.province_code, self.regency_code, None)


@dataclass(frozen=True)
class DistrictScope:
    """Scope of a village unit."""

    province_code: str
    regency_code: str
    district_code: str

    @property
    def codes(self) -> tuple[str | None, str | None, str | None]:
        return (self.province_code, self.regency_code, self.district_code)


Scope = NationalScope | ProvinceScope | RegencyScope | DistrictScope

_SCOPE_TYPES: dict[RegionKind, type] = {
    RegionKind.PROVINCE: NationalScope,
    RegionKind.REGENCY: ProvinceScope,
    RegionKind.DISTRICT: RegencyScope,
    RegionKind.VILLAGE: DistrictScope,
}


@dataclass(frozen=True)
class SourceRecord:
    """One leaf entry of a source unit."""

    kind: RegionKind
    scope: Scope
    local_code: str
    name: str


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LevelLayout:
    """Where one level's units live and how their names encode scope."""

    directory: str
    pattern: re.Pattern[str]


DEFAULT_LAYOUT: dict[RegionKind, LevelLayout] = {
    RegionKind.PROVINCE: LevelLayout("provinsi", re.compile(r"provinsi\.json")),
    RegionKind.REGENCY: LevelLayout("kabupaten_kota", re.compile(r"kab-(\d+)\.json")),
    RegionKind.DISTRICT: LevelLayout("kecamatan", re.compile(r"kec-(\d+)-(\d+)\.json")),
    RegionKind.VILLAGE: LevelLayout(
        "kelurahan_desa", re.compile(r"keldesa-(\d+)-(\d+)-(\d+)\.json"),
    ),
}


def parse_scope(kind: RegionKind, filename: str, layout: LevelLayout) -> Scope:
    """Parse a unit's scope key from its file name.

    Raises:
        MalformedSourceUnit: If the name does not match the level's pattern.
    """
    match = layout.pattern.fullmatch(filename)
    if match is None:
        msg = f"Cannot parse {kind.value} scope key from {filename!r}"
        raise MalformedSourceUnit(msg, context={"unit": filename})
    return _SCOPE_TYPES[kind](*match.groups())


def parse_entries(payload: Any, unit: str) -> list[tuple[str, str]]:
    """Validate a unit's decoded JSON into an ordered list of (code, name).

    Accepts an object mapping code -> name or a list of [code, name] pairs.

    Raises:
        MalformedSourceUnit: On any other shape or an empty code/name.
    """
    if isinstance(payload, dict):
        raw_pairs = list(payload.items())
    elif isinstance(payload, list):
        raw_pairs = []
        for item in payload:
            if isinstance(item, dict) and "code" in item and "name" in item:
                raw_pairs.append((item["code"], item["name"]))
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                raw_pairs.append((item[0], item[1]))
            else:
                msg = f"Unexpected entry {item!r} in {unit}"
                raise MalformedSourceUnit(msg, context={"unit": unit})
    else:
        msg = f"Expected an object or a list of pairs in {unit}, got {type(payload).__name__}"
        raise MalformedSourceUnit(msg, context={"unit": unit})

    entries: list[tuple[str, str]] = []
    for code, name in raw_pairs:
        if isinstance(code, bool) or not isinstance(code, (str, int)) or not isinstance(name, str):
            msg = f"Non-string code or name {code!r}: {name!r} in {unit}"
            raise MalformedSourceUnit(msg, context={"unit": unit})
        code, name = str(code).strip(), name.strip()
        if not code or not name:
            msg = f"Empty code or name in {unit}"
            raise MalformedSourceUnit(msg, context={"unit": unit})
        entries.append((code, name))
    return entries


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class SourceReader:
    """Lazy, restartable reader over the per-level source tree."""

    def __init__(
        self,
        root: str | Path,
        layout: dict[RegionKind, LevelLayout] | None = None,
    ) -> None:
        self._root = Path(root)
        self._layout = layout or DEFAULT_LAYOUT
        self.issues: list[SourceIssue] = []

    @property
    def root(self) -> Path:
        return self._root

    @property
    def skipped_units(self) -> int:
        return len(self.issues)

    def read_provinces(self) -> Iterator[SourceRecord]:
        return self.read(RegionKind.PROVINCE)

    def read_regencies(self) -> Iterator[SourceRecord]:
        return self.read(RegionKind.REGENCY)

    def read_districts(self) -> Iterator[SourceRecord]:
        return self.read(RegionKind.DISTRICT)

    def read_villages(self) -> Iterator[SourceRecord]:
        return self.read(RegionKind.VILLAGE)

    def read(self, kind: RegionKind) -> Iterator[SourceRecord]:
        """Yield every record of ``kind``, unit by unit in file-name order.

        Re-reading re-opens the source and replaces the issues recorded for
        this level by the previous read.
        """
        self.issues[:] = [issue for issue in self.issues if issue.kind != kind]
        for path, scope in self._units(kind):
            entries = self._read_unit(kind, path)
            if entries is None:
                continue
            for local_code, name in entries:
                yield SourceRecord(kind=kind, scope=scope, local_code=local_code, name=name)

    def _units(self, kind: RegionKind) -> Iterator[tuple[Path, Scope]]:
        layout = self._layout[kind]
        directory = self._root / layout.directory

        if kind == RegionKind.PROVINCE:
            yield directory / "provinsi.json", NationalScope()
            return

        try:
            paths = sorted(p for p in directory.iterdir() if p.suffix == ".json")
        except OSError as exc:
            self._skip(kind, directory, SourceUnavailable(
                f"Cannot list {kind.value} units in {directory}: {exc}",
                context={"unit": str(directory)},
            ))
            return

        for path in paths:
            try:
                scope = parse_scope(kind, path.name, layout)
            except MalformedSourceUnit as exc:
                self._skip(kind, path, exc)
                continue
            yield path, scope

    def _read_unit(self, kind: RegionKind, path: Path) -> list[tuple[str, str]] | None:
        try:
            text = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            self._skip(kind, path, SourceUnavailable(
                f"Cannot open {path}: {exc}", context={"unit": str(path)},
            ))
            return None
        except UnicodeDecodeError as exc:
            self._skip(kind, path, MalformedSourceUnit(
                f"{path.name} is not valid UTF-8: {exc}", context={"unit": str(path)},
            ))
            return None

        try:
            return parse_entries(json.loads(text), path.name)
        except json.JSONDecodeError as exc:
            self._skip(kind, path, MalformedSourceUnit(
                f"Invalid JSON in {path.name}: {exc}", context={"unit": str(path)},
            ))
        except MalformedSourceUnit as exc:
            self._skip(kind, path, exc)
        return None

    def _skip(self, kind: RegionKind, unit: Path, exc: WilayahError) -> None:
        logger.warning("Skipping %s unit %s: %s", kind.value, unit, exc.message)
        self.issues.append(SourceIssue(
            kind=kind,
            unit=str(unit),
            error=exc.error_code,
            message=exc.message,
        ))
