"""Shared pytest fixtures for the wilayah test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: session factory bound to db_engine (bulk loader tests)
- client: AsyncClient with dependency overrides for DB-backed testing
- source_tree: a small per-level JSON source tree under tmp_path
- sample_regions / seeded_session: the assembled tree, stored
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import wilayah.db.tables  # noqa: F401 — register ORM models on Base.metadata
from wilayah.db.session import Base, get_async_session
from wilayah.hierarchy.assembler import HierarchyAssembler
from wilayah.ingestion.source_reader import SourceReader
from wilayah.repositories.regions import RegionRepository

GENERATED_AT = datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)

# Two provinces, three regencies, four districts, three villages.
SAMPLE_SOURCE: dict[str, dict[str, str]] = {
    "provinsi/provinsi.json": {"11": "ACEH", "12": "SUMATERA UTARA"},
    "kabupaten_kota/kab-11.json": {"01": "KAB. ACEH SELATAN", "71": "KOTA BANDA ACEH"},
    "kabupaten_kota/kab-12.json": {"01": "KAB. TAPANULI TENGAH"},
    "kecamatan/kec-11-01.json": {"01": "Bakongan", "02": "Kluet Utara"},
    "kecamatan/kec-11-71.json": {"01": "Meuraxa"},
    "kecamatan/kec-12-01.json": {"01": "Barus"},
    "kelurahan_desa/keldesa-11-01-01.json": {"2001": "Keude Bakongan", "2002": "Ujong Mangki"},
    "kelurahan_desa/keldesa-11-71-01.json": {"1001": "Gampong Blang"},
}


def write_source_tree(root: Path, units: dict[str, object]) -> Path:
    """Write ``{relative path: JSON payload}`` under ``root``.

    A ``str`` payload is written verbatim (for malformed-unit tests).
    """
    for relative, payload in units.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        text = payload if isinstance(payload, str) else json.dumps(payload)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    return write_source_tree(tmp_path / "data_wilayah", SAMPLE_SOURCE)


@pytest.fixture
def make_source_tree(tmp_path: Path):
    """Callable writing the given units into a fresh tree under tmp_path."""
    def _make(units: dict[str, object]) -> Path:
        return write_source_tree(tmp_path / "custom", units)
    return _make


@pytest.fixture
def sample_regions(source_tree: Path) -> list:
    return list(HierarchyAssembler(SourceReader(source_tree), generated_at=GENERATED_AT))


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed — it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Factory for code that opens its own sessions and transactions.

    The in-memory engine has a single shared connection, so loads under
    test run with max_concurrency=1.
    """
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def file_session_factory(tmp_path: Path):
    """Session factory over a file-backed SQLite store with a real connection pool.

    Each session gets its own connection, so batch writers run concurrently;
    SQLite serializes their writes behind its busy timeout.
    """
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'wilayah.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=eng, class_=AsyncSession, expire_on_commit=False)
    await eng.dispose()


@pytest.fixture
async def seeded_session(db_session: AsyncSession, sample_regions: list) -> AsyncSession:
    await RegionRepository(db_session).insert_many(sample_regions)
    await db_session.flush()
    return db_session


@pytest.fixture
async def client(seeded_session):
    """AsyncClient with get_async_session overridden to use the seeded test session."""
    from wilayah.api.main import app

    async def _override_session():
        yield seeded_session

    app.dependency_overrides[get_async_session] = _override_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
