"""
FastAPI Application Factory

Default application served by the entrypoint when APP is not set. It only
answers health checks; real deployments point APP at their own ASGI app
("package.module:attribute").

The factory pattern keeps tests and the entrypoint on the same code path:
tests build a fresh app with create_app(), the server imports `app`.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from utils.logger import get_logger
from models.enums import LogCategory

log = get_logger().for_category(LogCategory.API)


def create_app(
    title: str = "Graceful Server",
    description: str = "ASGI application supervised by graceful-server",
    version: str = "1.0.0",
    docs_enabled: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        title: API title (shown in docs)
        description: API description
        version: API version
        docs_enabled: Enable /docs and /redoc

    Returns:
        Configured FastAPI application ready to run
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log.debug("Application starting up")
        yield
        log.debug("Application shutting down")

    app = FastAPI(
        title=title,
        description=description,
        version=version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    # =========================================================================
    # Health Check Endpoint
    # =========================================================================

    @app.get(
        "/api/health",
        tags=["System"],
        summary="Health check",
        description="Check if API is running and responding"
    )
    async def health_check():
        """Simple health check endpoint for monitoring"""
        return {
            "status": "healthy",
            "version": version
        }

    @app.get("/", include_in_schema=False)
    async def root():
        return JSONResponse(
            {
                "message": title,
                "docs": "/docs" if docs_enabled else None,
                "health": "/api/health"
            }
        )

    log.debug(f"FastAPI app created: {title} v{version}")

    return app


app = create_app()
