"""Application factory for the meetnotes FastAPI app."""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from meetnotes import __version__
from meetnotes.container import ServiceContainer, build_container
from meetnotes.core.errors import AppError, app_error_handler, validation_error_handler
from meetnotes.core.logging import setup_logging
from meetnotes.core.settings import Settings, get_settings
from meetnotes.routers import health as health_router
from meetnotes.routers import integrations as integrations_router
from meetnotes.routers import meetings as meetings_router


def create_app(
    settings: Settings | None = None,
    *,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Build the app; a prebuilt container is used as-is and left open on shutdown."""
    settings = settings or (container.settings if container else get_settings())
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            app.state.container = container
            yield
            return
        app.state.container = build_container(settings)
        await app.state.container.database.init_models()
        try:
            yield
        finally:
            await app.state.container.aclose()

    app = FastAPI(
        title="meetnotes API",
        version=__version__,
        description="Meeting transcription and analysis built on FastAPI and OpenAI",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # Include routers
    app.include_router(health_router.router, prefix=settings.api_prefix)
    app.include_router(meetings_router.router, prefix=settings.api_prefix)
    app.include_router(integrations_router.router, prefix=settings.api_prefix)

    # Error handlers
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]

    return app


app = create_app()
