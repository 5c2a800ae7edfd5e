"""FastAPI application for the LetzPocket PropertyData service.

``create_app`` wires middleware, exception handlers and routes. The
lifespan opens the database, builds the service graph once and parks it on
``app.state`` for the dependency getters in ``letzpocket.dependencies``.
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letzpocket.config import Settings, get_settings
from letzpocket.core.exceptions import LetzPocketError
from letzpocket.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_logger,
    log_context,
    set_correlation_id,
)
from letzpocket.schemas.common import HealthCheckResponse
from letzpocket.services.admin import PropertyDataAdmin
from letzpocket.services.analytics import PropertyDataService
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.propertydata import PropertyDataClient
from letzpocket.services.quota import QuotaManager
from letzpocket.services.scheduler import QuotaResetScheduler
from letzpocket.stores import CacheStore, QuotaStore

logger = get_logger(__name__)
request_logger = get_logger("letzpocket.request")
error_logger = get_logger("letzpocket.exceptions")


@dataclass
class Services:
    """Everything the routes need, built once per process."""

    client: PropertyDataClient
    cache_manager: ResponseCacheManager
    quota_manager: QuotaManager
    property_data_service: PropertyDataService
    admin: PropertyDataAdmin
    scheduler: QuotaResetScheduler


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    client = PropertyDataClient(settings)
    cache_manager = ResponseCacheManager(
        CacheStore(session_factory),
        fetch_timeout=settings.propertydata_timeout,
    )
    quota_manager = QuotaManager(
        QuotaStore(session_factory),
        default_plan=settings.default_quota_plan,
        cache_manager=cache_manager,
    )
    return Services(
        client=client,
        cache_manager=cache_manager,
        quota_manager=quota_manager,
        property_data_service=PropertyDataService(
            client,
            cache_manager,
            quota_manager,
            batch_concurrency=settings.propertydata_batch_concurrency,
        ),
        admin=PropertyDataAdmin(quota_manager, cache_manager, settings),
        scheduler=QuotaResetScheduler(quota_manager, settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database and services on startup; close them on shutdown."""
    from letzpocket.core.database import close_db, get_session_factory, init_db

    settings: Settings = app.state.settings
    configure_logging(settings)

    await init_db(settings)
    services = build_services(settings, get_session_factory())

    app.state.cache_manager = services.cache_manager
    app.state.quota_manager = services.quota_manager
    app.state.property_data_service = services.property_data_service
    app.state.admin = services.admin

    services.scheduler.start()
    if not services.client.is_configured:
        logger.warning("propertydata_key_missing")

    logger.info(
        "app_started",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.app_env.value,
        default_plan=settings.default_quota_plan,
    )

    try:
        yield
    finally:
        services.scheduler.stop()
        await services.client.close()
        await close_db()
        logger.info("app_stopped", app_name=settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings override (tests); defaults to ``get_settings()``
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Property analytics for UK landlords, backed by PropertyData with "
            "response caching and per-user credit quotas."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    configure_middleware(app, settings)
    configure_exception_handlers(app)
    configure_routes(app)
    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_context_middleware)


async def request_context_middleware(request: Request, call_next: Any) -> Any:
    """Bind request id, method and path to every entry logged for a request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    set_correlation_id(request_id)
    started = time.perf_counter()

    with log_context(method=request.method, path=request.url.path):
        try:
            response = await call_next(request)
        except Exception as exc:
            request_logger.error(
                "request_failed",
                duration_ms=_elapsed_ms(started),
                error=str(exc),
            )
            raise
        else:
            request_logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
                user_id=request.query_params.get("user_id"),
            )
        finally:
            clear_correlation_id()

    response.headers["X-Request-ID"] = request_id
    return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def handle_letzpocket_error(
    request: Request, exc: LetzPocketError
) -> JSONResponse:
    """Render a ``LetzPocketError`` with its own status and error body."""
    log = error_logger.error if exc.status_code >= 500 else error_logger.warning
    log(
        "request_error",
        error_code=exc.code,
        error_message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(request_id=getattr(request.state, "request_id", None)),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    error_logger.exception(
        "unhandled_exception",
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    body = LetzPocketError().to_dict(
        request_id=getattr(request.state, "request_id", None)
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def configure_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(
        LetzPocketError, handle_letzpocket_error  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, handle_unexpected_error)


def configure_routes(app: FastAPI) -> None:
    @app.get("/health/live", tags=["Health"], summary="Liveness probe")
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.get(
        "/health/ready",
        response_model=HealthCheckResponse,
        tags=["Health"],
        summary="Readiness probe",
        description=(
            "error when the database is unreachable; degraded when only the "
            "PropertyData key is missing (cached data is still served)."
        ),
    )
    async def readiness(request: Request) -> HealthCheckResponse:
        from letzpocket.core.database import check_db_connection

        db_ok = await check_db_connection()
        provider_ok = request.app.state.settings.propertydata_configured

        if not db_ok:
            overall = "error"
        elif not provider_ok:
            overall = "degraded"
        else:
            overall = "ok"

        return HealthCheckResponse(
            status=overall,
            checks={
                "database": "ok" if db_ok else "error",
                "propertydata": "ok" if provider_ok else "not_configured",
            },
        )

    @app.get("/", tags=["Root"], summary="API root")
    async def root(request: Request) -> dict[str, str]:
        settings = request.app.state.settings
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health/live",
        }

    from letzpocket.api.v1.router import router as v1_router

    app.include_router(v1_router, prefix="/api/v1")


app = create_app()


def cli() -> None:
    """Run the API with uvicorn (``letzpocket`` console script)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "letzpocket.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
