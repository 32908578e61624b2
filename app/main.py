from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api import gateway_router, router, sensor_router
from app.errors import request_validation_handler
from app.schemas import ErrorDetail
from datastore.repository import build_default_repository, build_default_store
from logging_config import configure_logging
from models.errors import ErrorKind
from services.gateways import build_default_gateway_service
from services.sensors import build_default_sensor_service
from settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    store = build_default_store()
    try:
        yield
    finally:
        store.close()
        build_default_sensor_service.cache_clear()
        build_default_gateway_service.cache_clear()
        build_default_repository.cache_clear()
        build_default_store.cache_clear()


async def log_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Handled request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((time.perf_counter() - started) * 1000),
        },
    )
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"method": request.method, "path": request.url.path, "error_kind": ErrorKind.internal.value},
    )
    detail = ErrorDetail(error=ErrorKind.internal.value, message="Internal server error.")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail.model_dump()},
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sensor Graph API",
        description="Gateways, sensors, sensor types and last readings kept in a labeled property graph.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.middleware("http")(log_requests)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    app.include_router(gateway_router)
    app.include_router(sensor_router)
    return app


def serve() -> None:
    """Run the API on the configured listen address."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


app = create_app()
