"""FastAPI dependency injection factories for the region store and queries."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wilayah.config.settings import Settings, get_settings
from wilayah.db.session import get_async_session
from wilayah.query.service import RegionQueryService
from wilayah.repositories.regions import RegionRepository


async def get_region_repo(
    session: AsyncSession = Depends(get_async_session),
) -> RegionRepository:
    return RegionRepository(session)


async def get_query_service(
    repo: RegionRepository = Depends(get_region_repo),
    settings: Settings = Depends(get_settings),
) -> RegionQueryService:
    return RegionQueryService(
        repo,
        min_term_length=settings.SEARCH_MIN_TERM_LENGTH,
        max_limit=settings.SEARCH_MAX_LIMIT,
    )
