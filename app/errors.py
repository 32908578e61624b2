"""Translation of service failures into HTTP responses."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.schemas import ErrorDetail
from models.errors import ErrorKind, Failure

logger = logging.getLogger(__name__)

_DIRECT_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.invalid_request: status.HTTP_400_BAD_REQUEST,
    ErrorKind.gateway_not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.sensor_not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.sensor_type_not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.sensor_already_connected: status.HTTP_400_BAD_REQUEST,
    ErrorKind.internal: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Lookups that happen inside a composite write report a bad request instead.
_COMPOSITE_STATUS: Dict[ErrorKind, int] = {
    **_DIRECT_STATUS,
    ErrorKind.gateway_not_found: status.HTTP_400_BAD_REQUEST,
    ErrorKind.sensor_not_found: status.HTTP_400_BAD_REQUEST,
    ErrorKind.sensor_type_not_found: status.HTTP_400_BAD_REQUEST,
}


def status_for(failure: Failure, composite: bool = False) -> int:
    table = _COMPOSITE_STATUS if composite else _DIRECT_STATUS
    return table[failure.kind]


def failure_exception(failure: Failure, composite: bool = False) -> HTTPException:
    status_code = status_for(failure, composite=composite)
    if failure.kind is ErrorKind.internal:
        logger.error(failure.message, extra={"error_kind": failure.kind.value, "status_code": status_code})
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(error=failure.kind.value, message=failure.message).model_dump(),
    )


def _first_error_message(exc: RequestValidationError) -> Optional[str]:
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        return f"{location}: {message}" if location else message
    return None


async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = ErrorDetail(
        error=ErrorKind.invalid_request.value,
        message=_first_error_message(exc) or "Malformed request.",
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail.model_dump()})
