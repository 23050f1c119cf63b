from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from zenith import __version__
from zenith.build.router import router as build_router
from zenith.core.config import Settings, get_settings
from zenith.core.errors import PipelineError, ValidationError
from zenith.core.limiter import limiter
from zenith.core.logging import configure_structlog
from zenith.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from zenith.core.sentry import init_sentry
from zenith.deliver.router import router as deliver_router
from zenith.deploy.router import router as deploy_router
from zenith.ingest.router import router as ingest_router
from zenith.services import Services, build_services

log = structlog.get_logger(__name__)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("pipeline.failed", path=request.url.path, kind=exc.kind, error=exc.message)
    else:
        log.info("pipeline.rejected", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "invalid request body"
    error = ValidationError(message)
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        fastapi_app.state.services.shutdown()

    _app = FastAPI(
        title="Zenith API",
        description="Repository to public static site pipeline",
        version=__version__,
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # Rate limiter state: SlowAPI reads limiter from app.state
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    _app.add_exception_handler(PipelineError, pipeline_error_handler)
    _app.add_exception_handler(RequestValidationError, request_validation_handler)

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _app.add_middleware(SlowAPIMiddleware)
    _app.add_middleware(SecurityHeadersMiddleware)
    _app.add_middleware(RequestIdMiddleware)

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )
    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Pipeline services: one lock table and one static server per process
    # ---------------------------------------------------------------------------
    _app.state.services = services or build_services(settings)

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(ingest_router)
    _app.include_router(build_router)
    _app.include_router(deliver_router)
    _app.include_router(deploy_router)

    return _app
