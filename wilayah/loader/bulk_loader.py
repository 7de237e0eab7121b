"""Bulk loader — moves an assembled region stream into the store.

Clear-then-load is the only update mode: the previous generation is
deleted, then the stream is written in batches that never mix kinds.
Each batch is one transaction; a failed batch is recorded with its code
range and the load continues. After loading, a referential pass reports
regions whose immediate parent is missing (non-fatal).

Readers are not isolated from an in-flight load: a query during the
clear-then-load window may see a partially cleared or partially
repopulated store.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wilayah.config.settings import get_settings
from wilayah.db.session import CONNECTIVITY_ERRORS
from wilayah.errors import BatchWriteFailure, LoadAborted, StoreUnavailable, WilayahError
from wilayah.models.load import BatchFailure, LoadReport, SourceIssue
from wilayah.models.region import KIND_ORDER, Region, RegionKind
from wilayah.repositories.regions import RegionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Batch:
    index: int
    kind: RegionKind
    regions: list[Region]

    @property
    def code_range(self) -> tuple[str, str]:
        return self.regions[0].full_code, self.regions[-1].full_code


def iter_batches(stream: Iterable[Region], batch_size: int) -> Iterable[_Batch]:
    """Group a region stream into batches of at most ``batch_size``.

    A batch is flushed early whenever the kind changes.
    """
    if batch_size < 1:
        msg = f"batch_size must be >= 1, got {batch_size}"
        raise ValueError(msg)

    index = 0
    current: list[Region] = []
    for region in stream:
        if current and (region.kind != current[0].kind or len(current) >= batch_size):
            yield _Batch(index=index, kind=current[0].kind, regions=current)
            index += 1
            current = []
        current.append(region)
    if current:
        yield _Batch(index=index, kind=current[0].kind, regions=current)


class BulkLoader:
    """Load one generation of regions with bounded concurrent batch writes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        orphan_sample_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._batch_size = batch_size or settings.LOAD_BATCH_SIZE
        self._max_concurrency = max_concurrency or settings.LOAD_MAX_CONCURRENCY
        self._orphan_sample_limit = (
            settings.ORPHAN_SAMPLE_LIMIT if orphan_sample_limit is None else orphan_sample_limit
        )

    async def load_generation(
        self,
        stream: Iterable[Region],
        batch_size: int | None = None,
        *,
        clear_existing: bool = True,
        cancel: asyncio.Event | None = None,
        source_issues: Sequence[SourceIssue] = (),
    ) -> LoadReport:
        """Replace the stored generation with ``stream``.

        Args:
            stream: Regions in canonical order (provinces first).
            batch_size: Overrides the loader's batch size for this load.
            clear_existing: Delete every stored region before loading.
            cancel: When set, stop dispatching batches; in-flight batches
                complete and the report is marked incomplete.
            source_issues: The reader's issue list. Read after the stream
                is exhausted, so the live ``SourceReader.issues`` list may
                be passed.

        Returns:
            LoadReport with per-kind inserts, batch failures and orphans.

        Raises:
            StoreUnavailable: If the store becomes unreachable.
            LoadAborted: If the stream raises (malformed record, composition
                error).

            Both carry the partial report as ``exc.report``.
        """
        size = batch_size or self._batch_size
        if size < 1:
            msg = f"batch_size must be >= 1, got {size}"
            raise ValueError(msg)
        report = LoadReport()
        logger.info("Starting load generation %s (batch_size=%d, concurrency=%d)",
                    report.generation_id, size, self._max_concurrency)

        try:
            if clear_existing:
                report.cleared = await self._clear()
                logger.info("Cleared %d existing regions", report.cleared)

            await self._write_all(stream, size, report, cancel)

            report.source_issues = list(source_issues)
            report.skipped = len(report.source_issues)

            if report.cancelled:
                logger.info("Load %s cancelled; referential pass skipped", report.generation_id)
            else:
                await self._verify(report)
        except StoreUnavailable as exc:
            self._abort(report, source_issues)
            exc.report = report
            raise
        except (WilayahError, ValueError) as exc:
            # Raised while pulling the stream: a bad export line or a
            # composition error. Batches already written are kept.
            self._abort(report, source_issues)
            logger.error("Load %s aborted after %d regions: %s",
                         report.generation_id, report.total_inserted, exc)
            msg = f"Region stream failed: {exc}"
            raise LoadAborted(msg, report=report) from exc

        report.finish()
        logger.info(
            "Load %s finished: status=%s inserted=%d failed_batches=%d orphans=%d in %dms",
            report.generation_id, report.status.value, report.total_inserted,
            len(report.errors), report.orphan_count, report.duration_ms,
        )
        return report

    def _abort(self, report: LoadReport, source_issues: Sequence[SourceIssue]) -> None:
        report.aborted = True
        report.source_issues = list(source_issues)
        report.skipped = len(report.source_issues)
        report.finish()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _clear(self) -> int:
        try:
            async with self._session_factory() as session, session.begin():
                return await RegionRepository(session).delete_many()
        except CONNECTIVITY_ERRORS as exc:
            msg = f"Store unavailable while clearing: {exc}"
            raise StoreUnavailable(msg) from exc

    async def _write_all(
        self,
        stream: Iterable[Region],
        batch_size: int,
        report: LoadReport,
        cancel: asyncio.Event | None,
    ) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks: list[asyncio.Task] = []
        fatal: list[StoreUnavailable] = []

        async def run(batch: _Batch) -> None:
            try:
                await self._write_batch(batch)
            except BatchWriteFailure as exc:
                first, last = batch.code_range
                logger.warning("Batch %d (%s %s..%s) failed: %s",
                               batch.index, batch.kind.value, first, last, exc.message)
                report.errors.append(BatchFailure(
                    batch_index=batch.index,
                    kind=batch.kind,
                    first_code=first,
                    last_code=last,
                    size=len(batch.regions),
                    error=exc.message,
                ))
            except StoreUnavailable as exc:
                fatal.append(exc)
            else:
                report.inserted_by_kind[batch.kind] += len(batch.regions)
                logger.debug("Batch %d inserted %d %s regions",
                             batch.index, len(batch.regions), batch.kind.value)
            finally:
                semaphore.release()

        try:
            for batch in iter_batches(stream, batch_size):
                await semaphore.acquire()
                if fatal or (cancel is not None and cancel.is_set()):
                    semaphore.release()
                    if cancel is not None and cancel.is_set():
                        report.cancelled = True
                    break
                tasks = [t for t in tasks if not t.done() or t.exception() is not None]
                tasks.append(asyncio.create_task(run(batch)))
        finally:
            if tasks:
                await asyncio.gather(*tasks)

        if fatal:
            raise fatal[0]

    async def _write_batch(self, batch: _Batch) -> None:
        """Insert one batch atomically.

        Raises:
            BatchWriteFailure: The store rejected the batch (rolled back).
            StoreUnavailable: The store could not be reached.
        """
        try:
            async with self._session_factory() as session, session.begin():
                await RegionRepository(session).insert_many(batch.regions)
        except CONNECTIVITY_ERRORS as exc:
            msg = f"Store unavailable while writing batch {batch.index}: {exc}"
            raise StoreUnavailable(msg) from exc
        except SQLAlchemyError as exc:
            msg = f"{type(exc).__name__}: {getattr(exc, 'orig', None) or exc}"
            raise BatchWriteFailure(msg, context={"batch_index": batch.index}) from exc

    async def _verify(self, report: LoadReport) -> None:
        """Report stored regions whose immediate parent is missing."""
        try:
            async with self._session_factory() as session:
                repo = RegionRepository(session)
                for kind in KIND_ORDER[1:]:
                    count = await repo.count_orphans(kind)
                    if not count:
                        continue
                    report.orphan_count += count
                    room = self._orphan_sample_limit - len(report.orphans)
                    if room > 0:
                        report.orphans.extend(await repo.find_orphans(kind, limit=room))
                    logger.warning("%d %s regions reference a missing parent", count, kind.value)
        except CONNECTIVITY_ERRORS as exc:
            msg = f"Store unavailable during referential check: {exc}"
            raise StoreUnavailable(msg) from exc
