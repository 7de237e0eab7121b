"""Store connectivity check.

Pings the configured store, prints region counts per kind and exits
non-zero when the store is unreachable. Credentials in the URL are masked.

Usage:
    python -m scripts.check_store
"""

from __future__ import annotations

import asyncio
import sys

from sqlalchemy.engine import make_url

from wilayah.config.settings import get_settings
from wilayah.db.session import Store
from wilayah.errors import StoreUnavailable
from wilayah.query.service import RegionQueryService
from wilayah.repositories.regions import RegionRepository


def mask_url(url: str) -> str:
    """Render ``url`` with its password hidden."""
    return make_url(url).render_as_string(hide_password=True)


async def check(store: Store) -> dict[str, int]:
    await store.ping()
    async with store.session_factory() as session:
        return await RegionQueryService(RegionRepository(session)).aggregate_counts()


async def _main() -> int:
    settings = get_settings()
    print(f"Store: {mask_url(settings.DATABASE_URL)}")
    store = Store.from_settings(settings)
    try:
        counts = await check(store)
    except StoreUnavailable as exc:
        print(f"Connection failed: {exc.message}")
        return 1
    finally:
        await store.close()

    print("Connected.")
    for kind, count in counts.items():
        print(f"  {kind:<9} {count:>8,}")
    return 0


def main() -> int:
    return asyncio.run(_main())


if __name__ == "__main__":
    sys.exit(main())
