"""FastAPI application entry point for the wilayah region service.

The Store is opened in the lifespan and closed on shutdown; request
sessions come from it through get_async_session.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wilayah.api.regions import router as regions_router
from wilayah.config.settings import get_settings
from wilayah.db.session import CONNECTIVITY_ERRORS, Store, get_async_session
from wilayah.errors import StoreUnavailable, WilayahError
from wilayah.observability.logging import configure_logging

APP_VERSION = "1.0.0"

settings = get_settings()
logger = configure_logging(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = Store.from_settings(settings)
    app.state.store = store
    logger.info("store_opened", environment=settings.ENVIRONMENT.value)
    try:
        yield
    finally:
        await store.close()
        logger.info("store_closed")


# --- FastAPI app ---
app = FastAPI(
    title="Wilayah API",
    description="Indonesian administrative regions: provinces, regencies, districts, villages.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# --- Routers ---
app.include_router(regions_router)


# --- Error mapping ---


@app.exception_handler(WilayahError)
async def wilayah_error_handler(request: Request, exc: WilayahError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.error_code,
                     message=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def store_unreachable_handler(request: Request, exc: Exception) -> JSONResponse:
    return await wilayah_error_handler(request, StoreUnavailable(f"Store unreachable: {exc}"))


for _error in CONNECTIVITY_ERRORS:
    app.add_exception_handler(_error, store_unreachable_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "INVALID_ARGUMENT",
            "message": "Malformed request parameters.",
            "context": {"errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                for err in exc.errors()
            ]},
        },
    )


# --- Infrastructure Endpoints ---


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_async_session)) -> dict:
    """Liveness check that also pings the store.

    Returns 200 always (degraded status if the store is down).
    """
    checks: dict[str, bool] = {"api": True}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        await session.rollback()
        checks["database"] = False

    all_ok = all(checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "wilayah",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
