from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app.config import get_settings
from app.core.app_state import AppState, build_app_state
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import assist, outbound, webhooks

logger = get_logger("main")


def create_app(testing: bool = False, state: Optional[AppState] = None) -> FastAPI:
    """
    Build the FastAPI application.

    `state` replaces the collaborators built from the environment; tests pass
    one wired with in-memory fakes.
    """
    settings = get_settings()
    LoggingConfig(level="DEBUG" if testing else settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s (%s)", settings.app_name, settings.environment)
        yield
        await app.state.services.aclose()

    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    app.state.services = state or build_app_state(settings)

    app.include_router(webhooks.router)
    app.include_router(outbound.router)
    app.include_router(assist.router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
