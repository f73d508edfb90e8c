from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadportal.context import get_correlation_id


logger = logging.getLogger("leadportal.errors")

INTERNAL_ERROR = "Internal server error"


def _correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(request.state, "correlation_id", None)


def error_response(
    request: Request,
    *,
    status_code: int,
    message: str,
    details: Any = None,
) -> JSONResponse:
    content: dict[str, Any] = {"error": message, "correlation_id": _correlation_id(request)}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def internal_error_response(request: Request, exc: Exception) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=INTERNAL_ERROR,
        details=str(exc) or exc.__class__.__name__,
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(request, status_code=exc.status_code, message=str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(request, status_code=status.HTTP_400_BAD_REQUEST, message=message)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc, extra={"path": request.url.path, "error": str(exc)})
    return internal_error_response(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)
