"""Dream billing-core FastAPI application — entry point for the API server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from src.api.services import Services, build_services
from src.core.exceptions import DreamBaseError
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine, init_schema

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — build services unless injected, close on exit."""
    log.info("api_starting")
    owned = getattr(app.state, "services", None) is None
    if owned:
        engine = await get_engine()
        await init_schema(engine)
        app.state.services = build_services(get_settings(), engine)
    yield
    if owned:
        await app.state.services.aclose()
        await close_engine()
    log.info("api_shutdown")


async def dream_error_handler(request: Request, exc: DreamBaseError) -> JSONResponse:
    """Render domain errors as ``{"error": message, "retryable": bool}``."""
    log_fn = log.error if exc.status_code >= 500 else log.warning
    log_fn(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "retryable": exc.retryable},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = services.settings if services is not None else get_settings()
    setup_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="Dream API",
        description="Multi-tenant credential isolation and billing proxy",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DreamBaseError, dream_error_handler)  # type: ignore[arg-type]

    # Register routers
    from src.api.routes.billing import router as billing_router
    from src.api.routes.config import router as config_router
    from src.api.routes.customers import router as customers_router
    from src.api.routes.health import router as health_router
    from src.api.routes.internal import router as internal_router
    from src.api.routes.kv import router as kv_router
    from src.api.routes.oauth import router as oauth_router
    from src.api.routes.signup import router as signup_router
    from src.api.routes.usage import router as usage_router

    app.include_router(health_router)
    app.include_router(kv_router)
    app.include_router(oauth_router)
    app.include_router(config_router)
    app.include_router(billing_router)
    app.include_router(signup_router)
    app.include_router(usage_router)
    app.include_router(customers_router)
    app.include_router(internal_router)

    return app


app = create_app()
