"""Health and readiness endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy import text

from meetnotes import __version__
from meetnotes.container import ServiceContainer
from meetnotes.routers.dependencies import get_container

router = APIRouter()


@router.get("/health", tags=["meta"])  # simple health
async def health(
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict[str, object]:
    settings = container.settings
    database_error = None
    try:
        async with container.database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        database_error = str(e)

    return {
        "status": "ok" if database_error is None else "degraded",
        "environment": settings.environment,
        "debug": settings.debug,
        "version": __version__,
        "task_backend": settings.task_backend,
        "database": {"connected": database_error is None, "error": database_error},
        "background": {
            "pending": container.runner.pending,
            "recent_failures": [f.to_dict() for f in list(container.runner.failures)[-5:]],
        },
    }
