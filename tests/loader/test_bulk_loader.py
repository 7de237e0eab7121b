"""Tests for BulkLoader batching, failure isolation, orphans and cancellation."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from wilayah.errors import CompositionError, LoadAborted, StoreUnavailable
from wilayah.export.exporter import ExportFormat, export_regions, read_jsonl
from wilayah.hierarchy.assembler import HierarchyAssembler, build_region
from wilayah.ingestion.source_reader import (
    DistrictScope,
    NationalScope,
    ProvinceScope,
    RegencyScope,
    SourceReader,
    SourceRecord,
)
from wilayah.loader.bulk_loader import BulkLoader, iter_batches
from wilayah.models.load import LoadStatus
from wilayah.models.region import Region, RegionFilter, RegionKind
from wilayah.repositories.regions import RegionRepository

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _region(kind: RegionKind, scope, local_code: str, name: str = "X") -> Region:
    return build_region(SourceRecord(kind, scope, local_code, name), STAMP)


def _skeleton() -> list[Region]:
    """Province 11 > regency 1101 > district 110101."""
    return [
        _region(RegionKind.PROVINCE, NationalScope(), "11", "ACEH"),
        _region(RegionKind.REGENCY, ProvinceScope("11"), "01", "KAB. ACEH SELATAN"),
        _region(RegionKind.DISTRICT, RegencyScope("11", "01"), "01", "Bakongan"),
    ]


def _villages(count: int) -> list[Region]:
    scope = DistrictScope("11", "01", "01")
    return [
        _region(RegionKind.VILLAGE, scope, f"{i:04d}", f"Desa {i}") for i in range(1, count + 1)
    ]


def _loader(session_factory, **kwargs) -> BulkLoader:
    kwargs.setdefault("max_concurrency", 1)
    return BulkLoader(session_factory, **kwargs)


async def _count(session_factory, kind: RegionKind | None = None) -> int:
    async with session_factory() as session:
        return await RegionRepository(session).count(RegionFilter(kind=kind))


class _UnreachableStore:
    """Session factory whose sessions cannot connect."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def __aexit__(self, *exc_info):
        return False


class TestIterBatches:
    def test_batches_never_mix_kinds(self) -> None:
        stream = _skeleton() + _villages(5)
        batches = list(iter_batches(stream, batch_size=2))
        assert [(b.kind, len(b.regions)) for b in batches] == [
            (RegionKind.PROVINCE, 1),
            (RegionKind.REGENCY, 1),
            (RegionKind.DISTRICT, 1),
            (RegionKind.VILLAGE, 2),
            (RegionKind.VILLAGE, 2),
            (RegionKind.VILLAGE, 1),
        ]
        assert [b.index for b in batches] == list(range(6))

    def test_code_range(self) -> None:
        batch = next(iter_batches(_villages(3), batch_size=10))
        assert batch.code_range == ("1101010001", "1101010003")

    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            list(iter_batches(_villages(1), batch_size=0))


class TestLoadGeneration:
    @pytest.mark.anyio
    async def test_loads_assembled_tree(self, session_factory, source_tree) -> None:
        reader = SourceReader(source_tree)
        report = await _loader(session_factory, batch_size=2).load_generation(
            HierarchyAssembler(reader).assemble(), source_issues=reader.issues,
        )
        assert report.status == LoadStatus.COMPLETE
        assert report.inserted_by_kind == {
            RegionKind.PROVINCE: 2,
            RegionKind.REGENCY: 3,
            RegionKind.DISTRICT: 4,
            RegionKind.VILLAGE: 3,
        }
        assert report.total_inserted == 12
        assert report.errors == []
        assert report.orphan_count == 0
        assert report.finished_at is not None
        assert await _count(session_factory) == 12

    @pytest.mark.anyio
    async def test_reload_is_idempotent(self, session_factory, sample_regions) -> None:
        loader = _loader(session_factory)
        await loader.load_generation(sample_regions)
        second = await loader.load_generation(sample_regions)
        assert second.cleared == 12
        assert second.total_inserted == 12
        assert await _count(session_factory) == 12

    @pytest.mark.anyio
    async def test_failed_batch_is_isolated(self, session_factory) -> None:
        villages = _villages(2500)
        # Record #500 of the first village batch repeats #499's code.
        villages[499] = villages[498].model_copy(update={"name": "Duplicate"})
        report = await _loader(session_factory, batch_size=1000).load_generation(
            _skeleton() + villages,
        )

        assert report.inserted_by_kind[RegionKind.VILLAGE] == 2500 - 1000
        assert len(report.errors) == 1
        failure = report.errors[0]
        assert failure.kind == RegionKind.VILLAGE
        assert failure.size == 1000
        assert failure.first_code == "1101010001"
        assert failure.last_code == "1101011000"
        assert report.failed_records == 1000
        assert report.status == LoadStatus.PARTIAL
        assert await _count(session_factory, RegionKind.VILLAGE) == 1500

    @pytest.mark.anyio
    async def test_orphans_reported(self, session_factory) -> None:
        stream = [
            _region(RegionKind.PROVINCE, NationalScope(), "11"),
            _region(RegionKind.REGENCY, ProvinceScope("11"), "01"),
            _region(RegionKind.REGENCY, ProvinceScope("99"), "01"),
            _region(RegionKind.DISTRICT, RegencyScope("11", "02"), "01"),
        ]
        report = await _loader(session_factory).load_generation(stream)
        assert report.total_inserted == 4
        assert report.orphan_count == 2
        assert {(o.kind, o.full_code, o.parent_full_code) for o in report.orphans} == {
            (RegionKind.REGENCY, "9901", "99"),
            (RegionKind.DISTRICT, "110201", "1102"),
        }
        assert report.status == LoadStatus.PARTIAL

    @pytest.mark.anyio
    async def test_orphan_sample_is_capped(self, session_factory) -> None:
        stream = [_region(RegionKind.REGENCY, ProvinceScope("11"), f"{i:02d}") for i in range(1, 6)]
        report = await _loader(session_factory, orphan_sample_limit=2).load_generation(stream)
        assert report.orphan_count == 5
        assert len(report.orphans) == 2

    @pytest.mark.anyio
    async def test_skipped_units_make_load_partial(self, session_factory, make_source_tree) -> None:
        root = make_source_tree({
            "provinsi/provinsi.json": {"11": "ACEH"},
            "kabupaten_kota/kab-11.json": "{broken",
        })
        reader = SourceReader(root)
        report = await _loader(session_factory).load_generation(
            HierarchyAssembler(reader).assemble(), source_issues=reader.issues,
        )
        # kecamatan/ and kelurahan_desa/ are missing too.
        assert report.skipped == 3
        assert report.inserted_by_kind[RegionKind.PROVINCE] == 1
        assert report.status == LoadStatus.PARTIAL

    @pytest.mark.anyio
    async def test_no_clear_keeps_existing(self, session_factory) -> None:
        loader = _loader(session_factory)
        await loader.load_generation(_skeleton())
        report = await loader.load_generation(_villages(3), clear_existing=False)
        assert report.cleared == 0
        assert report.status == LoadStatus.COMPLETE
        assert await _count(session_factory) == 6

    @pytest.mark.anyio
    async def test_batch_size_override(self, session_factory) -> None:
        report = await _loader(session_factory, batch_size=1000).load_generation(
            _skeleton() + _villages(10), batch_size=3,
        )
        assert report.total_inserted == 13


class TestCancellation:
    @pytest.mark.anyio
    async def test_cancel_before_start(self, session_factory) -> None:
        cancel = asyncio.Event()
        cancel.set()
        report = await _loader(session_factory).load_generation(_skeleton(), cancel=cancel)
        assert report.cancelled is True
        assert report.total_inserted == 0
        assert report.status == LoadStatus.INCOMPLETE

    @pytest.mark.anyio
    async def test_cancel_mid_load_stops_dispatch(self, session_factory) -> None:
        cancel = asyncio.Event()
        villages = _villages(10)

        def stream():
            for i, region in enumerate(villages):
                if i == 4:
                    cancel.set()
                yield region

        report = await _loader(session_factory, batch_size=2).load_generation(
            stream(), cancel=cancel,
        )
        # The first batch was in flight before the event was set.
        assert report.inserted_by_kind[RegionKind.VILLAGE] == 2
        assert report.cancelled is True
        assert report.status == LoadStatus.INCOMPLETE
        assert report.orphan_count == 0
        assert await _count(session_factory) == 2


class TestStoreUnavailable:
    @pytest.mark.anyio
    async def test_clear_failure_aborts_with_report(self) -> None:
        loader = BulkLoader(_UnreachableStore(), max_concurrency=1)
        with pytest.raises(StoreUnavailable) as exc_info:
            await loader.load_generation(_skeleton())
        report = exc_info.value.report
        assert report is not None
        assert report.aborted is True
        assert report.status == LoadStatus.INCOMPLETE
        assert report.total_inserted == 0

    @pytest.mark.anyio
    async def test_write_failure_aborts(self) -> None:
        loader = BulkLoader(_UnreachableStore(), batch_size=1, max_concurrency=2)
        with pytest.raises(StoreUnavailable) as exc_info:
            await loader.load_generation(_villages(5), clear_existing=False)
        report = exc_info.value.report
        assert report.aborted is True
        assert report.errors == []


class TestStreamFailure:
    @pytest.mark.anyio
    async def test_bad_export_line_aborts_with_report(
        self, session_factory, sample_regions, tmp_path,
    ) -> None:
        export_regions(sample_regions, tmp_path, [ExportFormat.JSONL], per_kind=False)
        path = tmp_path / "regions.jsonl"
        lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
        lines.insert(5, "{not json\n")
        path.write_text("".join(lines), encoding="utf-8")

        with pytest.raises(LoadAborted) as exc_info:
            await _loader(session_factory, batch_size=2).load_generation(read_jsonl(path))

        report = exc_info.value.report
        assert report is not None
        assert report.aborted is True
        assert report.status == LoadStatus.INCOMPLETE
        assert report.finished_at is not None
        # Batches dispatched before the bad line are written and counted.
        assert report.total_inserted == 4
        assert await _count(session_factory) == 4

    @pytest.mark.anyio
    async def test_composition_error_aborts_with_report(self, session_factory) -> None:
        def stream():
            yield from _skeleton()
            raise CompositionError("village requires 3 non-empty ancestor code(s)")

        with pytest.raises(LoadAborted) as exc_info:
            await _loader(session_factory).load_generation(stream())
        assert isinstance(exc_info.value.__cause__, CompositionError)
        # The district batch was still open when the stream raised.
        assert exc_info.value.report.total_inserted == 2

    @pytest.mark.anyio
    async def test_bad_batch_size_rejected_before_clear(self, session_factory, sample_regions) -> None:
        loader = _loader(session_factory)
        await loader.load_generation(sample_regions)
        with pytest.raises(ValueError, match="batch_size"):
            await loader.load_generation(sample_regions, batch_size=-1)
        assert await _count(session_factory) == 12


class _PeakSessions:
    """Wrap a session factory and record the most sessions open at once."""

    def __init__(self, factory) -> None:
        self._factory = factory
        self.active = 0
        self.peak = 0

    @asynccontextmanager
    async def __call__(self):
        async with self._factory() as session:
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                yield session
            finally:
                self.active -= 1


class TestConcurrentWriters:
    @pytest.mark.anyio
    async def test_concurrent_load_totals(self, file_session_factory) -> None:
        factory = _PeakSessions(file_session_factory)
        loader = BulkLoader(factory, batch_size=25, max_concurrency=4)
        report = await loader.load_generation(_skeleton() + _villages(400))

        assert factory.peak > 1
        assert factory.peak <= 4
        assert report.status == LoadStatus.COMPLETE
        assert report.inserted_by_kind[RegionKind.VILLAGE] == 400
        assert report.total_inserted == 403
        assert await _count(file_session_factory) == 403

    @pytest.mark.anyio
    async def test_concurrent_failed_batch_is_isolated(self, file_session_factory) -> None:
        villages = _villages(400)
        # Duplicate inside the third village batch (codes 0051..0075).
        villages[60] = villages[59].model_copy(update={"name": "Duplicate"})
        factory = _PeakSessions(file_session_factory)
        report = await BulkLoader(factory, batch_size=25, max_concurrency=4).load_generation(
            _skeleton() + villages,
        )

        assert factory.peak > 1
        assert report.inserted_by_kind[RegionKind.VILLAGE] == 375
        assert len(report.errors) == 1
        assert report.errors[0].first_code == "1101010051"
        assert report.errors[0].last_code == "1101010075"
        assert report.status == LoadStatus.PARTIAL
        assert await _count(file_session_factory, RegionKind.VILLAGE) == 375

    @pytest.mark.anyio
    async def test_default_concurrency_from_settings(self, file_session_factory) -> None:
        loader = BulkLoader(file_session_factory)
        report = await loader.load_generation(_skeleton() + _villages(50), batch_size=5)
        assert report.total_inserted == 53
        assert await _count(file_session_factory) == 53
