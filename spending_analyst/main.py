"""FastAPI application instance and startup hooks."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from spending_analyst.ai_chatbot import (
    configure_dependencies as configure_chatbot_dependencies,
    download_router,
    router as chatbot_router,
)
from spending_analyst.core import get_logger, get_settings
from spending_analyst.core.logger import init_logging, shutdown_logging
from spending_analyst.db.rpc import DatabaseRPC

LOGGER = get_logger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    init_logging(level=settings.log_level, log_dir=settings.log_dir)

    app = FastAPI(title="Texas DOGE Spending Analyst", version="0.1.0")

    rpc = DatabaseRPC()
    configure_chatbot_dependencies(get_rpc=lambda: rpc)
    app.include_router(chatbot_router)
    app.include_router(download_router)
    LOGGER.info("Spending assistant routes registered (database %s)", settings.database.masked_url)

    @app.on_event("shutdown")
    def flush_logs() -> None:
        shutdown_logging()

    @app.get("/", include_in_schema=False)
    async def root_redirect():
        return RedirectResponse(url="/docs")

    LOGGER.info("FastAPI application initialised")
    return app


app = create_app()
