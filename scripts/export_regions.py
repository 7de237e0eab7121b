"""Export regions to CSV / JSONL / JSON interchange files.

Usage:
    python -m scripts.export_regions [--source DIR | --from-store]
                                     [--out DIR] [--format csv,jsonl,json]
                                     [--no-per-kind] [--no-combined]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from wilayah.config.settings import get_settings
from wilayah.db.session import Store
from wilayah.export.exporter import (
    ExportFormat,
    ExportSummary,
    export_from_store,
    export_regions,
)
from wilayah.hierarchy.assembler import HierarchyAssembler
from wilayah.ingestion.source_reader import SourceReader
from wilayah.observability.logging import configure_logging
from wilayah.repositories.regions import RegionRepository


def parse_formats(value: str) -> list[ExportFormat]:
    try:
        return [ExportFormat(part.strip().lower()) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Unknown format in {value!r}; choose from csv, jsonl, json"
        ) from exc


async def _export_store(args: argparse.Namespace) -> ExportSummary:
    store = Store.from_settings(get_settings())
    try:
        async with store.session_factory() as session:
            return await export_from_store(
                RegionRepository(session), args.out, args.format,
                per_kind=not args.no_per_kind, combined=not args.no_combined,
            )
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Export Indonesian administrative regions")
    origin = parser.add_mutually_exclusive_group()
    origin.add_argument("--source", default=None, help="Root of the per-level JSON source tree")
    origin.add_argument("--from-store", action="store_true", help="Export stored regions")
    parser.add_argument("--out", default=settings.EXPORT_PATH)
    parser.add_argument("--format", type=parse_formats, default=[ExportFormat.CSV, ExportFormat.JSONL])
    parser.add_argument("--no-per-kind", action="store_true")
    parser.add_argument("--no-combined", action="store_true")
    args = parser.parse_args(argv)

    log = configure_logging(settings)

    if args.from_store:
        summary = asyncio.run(_export_store(args))
    else:
        reader = SourceReader(args.source or settings.SOURCE_DATA_PATH)
        summary = export_regions(
            HierarchyAssembler(reader).assemble(), args.out, args.format,
            per_kind=not args.no_per_kind, combined=not args.no_combined,
        )
        for issue in reader.issues:
            log.warning("source_unit_skipped", unit=issue.unit, error=issue.error,
                        message=issue.message)

    print(json.dumps(summary.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
