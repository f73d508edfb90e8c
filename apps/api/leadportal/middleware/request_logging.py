from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadportal.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("leadportal.request")

QUIET_PATHS = frozenset({"/health", "/metrics"})


def _caller_uid(request: Request) -> str | None:
    principal = getattr(request.state, "principal", None)
    return getattr(principal, "uid", None)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request, tagged with the authenticated uid when known.

    ``request.state`` is shared with the endpoint, so the principal stored by the
    auth gate is visible here after ``call_next`` returns.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, 500, started, exc_info=True)
            raise
        self._record(request, response.status_code, started)
        return response

    def _record(self, request: Request, status_code: int, started: float, *, exc_info: bool = False) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        path = resolve_http_path_label(request)
        observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)

        fields = {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "uid": _caller_uid(request),
        }
        if status_code >= 500:
            logger.error("http.error" if exc_info else "http.request", exc_info=exc_info, extra=fields)
        elif path in QUIET_PATHS:
            logger.debug("http.request", extra=fields)
        else:
            logger.info("http.request", extra=fields)
