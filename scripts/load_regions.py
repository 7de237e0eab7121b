"""Load a full region generation into the store.

Reads the per-level source tree (or a JSONL export), assembles the
canonical stream and replaces the stored generation. Prints the load
report as JSON.

Usage:
    python -m scripts.load_regions [--source DIR | --from-jsonl FILE]
                                   [--batch-size N] [--concurrency N]
                                   [--no-clear] [--create-schema]

Exit codes: 0 complete, 2 partial or incomplete, 1 aborted (store
unavailable or unreadable input).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path

from wilayah.config.settings import get_settings
from wilayah.db.session import Store
from wilayah.errors import LoadAborted, StoreUnavailable
from wilayah.export.exporter import read_jsonl
from wilayah.hierarchy.assembler import HierarchyAssembler
from wilayah.ingestion.source_reader import SourceReader
from wilayah.loader.bulk_loader import BulkLoader
from wilayah.models.load import LoadReport, LoadStatus
from wilayah.observability.logging import configure_logging


async def run_load(
    store: Store,
    *,
    source: str | Path | None = None,
    from_jsonl: str | Path | None = None,
    batch_size: int | None = None,
    concurrency: int | None = None,
    clear_existing: bool = True,
    cancel: asyncio.Event | None = None,
) -> LoadReport:
    """Assemble (or read back) a generation and load it into ``store``."""
    loader = BulkLoader(
        store.session_factory,
        batch_size=batch_size,
        max_concurrency=concurrency,
    )
    if from_jsonl is not None:
        # Parse the whole export before the clear so a bad line leaves the
        # stored generation untouched.
        regions = list(read_jsonl(from_jsonl))
        return await loader.load_generation(
            regions, clear_existing=clear_existing, cancel=cancel,
        )

    reader = SourceReader(source or get_settings().SOURCE_DATA_PATH)
    assembler = HierarchyAssembler(reader)
    return await loader.load_generation(
        assembler.assemble(),
        clear_existing=clear_existing,
        cancel=cancel,
        source_issues=reader.issues,
    )


def _exit_code(report: LoadReport) -> int:
    return 0 if report.status == LoadStatus.COMPLETE else 2


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    log = configure_logging(settings)
    store = Store.from_settings(settings)

    cancel = asyncio.Event()
    with contextlib.suppress(NotImplementedError):  # no signal handlers on Windows
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)

    try:
        if args.create_schema:
            await store.create_schema()
        report = await run_load(
            store,
            source=args.source,
            from_jsonl=args.from_jsonl,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            clear_existing=not args.no_clear,
            cancel=cancel,
        )
    except (StoreUnavailable, LoadAborted) as exc:
        log.error("load_aborted", error=exc.error_code, message=exc.message)
        if exc.report is not None:
            print(exc.report.model_dump_json(indent=2))
        return 1
    except ValueError as exc:
        log.error("load_aborted", error="INVALID_INPUT", message=str(exc))
        return 1
    finally:
        await store.close()

    print(report.model_dump_json(indent=2))
    log.info(
        "load_finished",
        status=report.status.value,
        inserted=report.total_inserted,
        inserted_by_kind={k.value: v for k, v in report.inserted_by_kind.items()},
        skipped=report.skipped,
        failed_batches=len(report.errors),
        orphans=report.orphan_count,
        duration_ms=report.duration_ms,
    )
    return _exit_code(report)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load Indonesian administrative regions")
    origin = parser.add_mutually_exclusive_group()
    origin.add_argument("--source", help="Root of the per-level JSON source tree")
    origin.add_argument("--from-jsonl", help="Load a JSONL export instead of the source tree")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--no-clear", action="store_true",
                        help="Keep existing regions (duplicates will fail their batch)")
    parser.add_argument("--create-schema", action="store_true",
                        help="Create missing tables before loading")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
