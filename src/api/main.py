"""Main FastAPI application for Checkup-Ledger.

This module sets up the FastAPI application with its routes, exception
handlers, middleware and logging.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.errors import register_exception_handlers
from src.api.routes import health, health_check_results
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.settings import APP_VERSION, settings

setup_logging(use_json=settings.log_json, log_level=settings.log_level)

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging with an X-Process-Time header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.3f}s"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"{settings.app_name} API starting up...")
    logger.info("API documentation available at /api/docs")
    logger.info(f"Repository backend: {settings.db_config.db_type}")
    yield
    logger.info(f"{settings.app_name} API shutting down...")


app = FastAPI(
    title="Checkup-Ledger API",
    description="Lifecycle, history and list views for health check results",
    version=APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time"],
)
app.add_middleware(LoggingMiddleware)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(health_check_results.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Checkup-Ledger API",
        "version": APP_VERSION,
        "docs": "/api/docs",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level="info"
    )
