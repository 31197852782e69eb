"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cellflow import __version__
from cellflow.api.routes import router
from cellflow.config import get_settings
from cellflow.database.session import close_db, init_db
from cellflow.events import get_event_emitter
from cellflow.exceptions import NotFoundError
from cellflow.llm.router import get_router


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create metadata tables in development; on shutdown let listeners finish."""
    logger.info(f"Starting {settings.app_name} v{__version__} ({settings.environment})")

    if settings.environment == "development":
        await init_db()
        logger.info("Metadata tables ready")

    yield

    logger.info("Waiting for intelligence listeners before shutdown")
    await get_event_emitter().drain()
    await get_router().close()
    await close_db()


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Build the API application."""
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Fills AI-generated table fields from prompt templates",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        return {"name": settings.app_name, "version": __version__, "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cellflow.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
