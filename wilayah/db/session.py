"""SQLAlchemy async store handle for wilayah.

Provides:
- Base: DeclarativeBase for all ORM models
- Store: explicitly constructed engine + session factory (open on startup,
  close() on shutdown); there is no module-level engine
- get_async_session: FastAPI dependency with Unit-of-Work commit/rollback
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from wilayah.config.settings import Environment, Settings
from wilayah.errors import StoreUnavailable

# Driver errors that mean the store itself is unreachable.
CONNECTIVITY_ERRORS = (OperationalError, InterfaceError)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


class Store:
    """Live connection handle shared by the loader, query service and exporter."""

    def __init__(self, url: str | None = None, *, engine: AsyncEngine | None = None,
                 echo: bool = False) -> None:
        if engine is None:
            if url is None:
                msg = "Store needs a connection URL or an engine."
                raise ValueError(msg)
            engine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(
            settings.DATABASE_URL,
            echo=(settings.ENVIRONMENT == Environment.DEV and settings.LOG_LEVEL == "DEBUG"),
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def create_schema(self) -> None:
        """Create missing tables (dev/test; deployments use Alembic)."""
        import wilayah.db.tables  # noqa: F401 — register ORM models on Base.metadata

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        """Round-trip a trivial query.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except CONNECTIVITY_ERRORS as exc:
            msg = f"Store unreachable: {exc}"
            raise StoreUnavailable(msg) from exc

    async def close(self) -> None:
        await self._engine.dispose()


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session with Unit-of-Work semantics.

    The session comes from the Store opened in the application lifespan.
    Repositories only call add()/flush()/execute(). Commit happens once at
    the end of a successful request; rollback on any exception.
    """
    store: Store = request.app.state.store
    async with store.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
