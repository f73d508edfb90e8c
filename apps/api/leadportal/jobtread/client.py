from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

import httpx
from opentelemetry import trace

from leadportal.context import get_correlation_id
from leadportal.core.config import get_settings
from leadportal.jobtread.query import ARGS_KEY, Field, document as render_document
from leadportal.metrics import observe_jobtread_request


logger = logging.getLogger("leadportal.jobtread")
tracer = trace.get_tracer("leadportal.jobtread")

REQUEST_HEADERS = {
    "content-type": "text/plain;charset=UTF-8",
    "accept": "*/*",
}


class JobTreadError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class JobTreadClient:
    """Stateless Pave RPC client: one document in, one parsed JSON body out."""

    def __init__(self, api_url: str, *, timeout: float = 30.0, http: httpx.AsyncClient | None = None) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def query(self, document: Mapping[str, Any] | Field, grant_key: str | None) -> Any:
        if not grant_key:
            raise JobTreadError("JobTread grant key not configured")

        rendered = render_document(document) if isinstance(document, Field) else dict(document)
        payload = {"query": {ARGS_KEY: {"grantKey": grant_key}, **rendered}}
        operations = ",".join(key for key in rendered if key != ARGS_KEY)

        with tracer.start_as_current_span("jobtread.query") as span:
            span.set_attribute("jobtread.operations", operations)
            correlation_id = get_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)

            started = time.perf_counter()
            try:
                response = await self.http.post(self.api_url, content=json.dumps(payload), headers=REQUEST_HEADERS)
            except httpx.HTTPError as exc:
                observe_jobtread_request("transport_error", time.perf_counter() - started)
                raise JobTreadError(f"JobTread request failed: {exc}") from exc

            duration = time.perf_counter() - started
            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                observe_jobtread_request("http_error", duration)
                raise JobTreadError(
                    f"JobTread API error: {response.status_code} {response.reason_phrase} - {response.text}",
                    status_code=response.status_code,
                    reason=response.reason_phrase,
                    body=response.text,
                )

            try:
                parsed = response.json()
            except ValueError as exc:
                observe_jobtread_request("invalid_body", duration)
                raise JobTreadError("JobTread API returned a non-JSON body", status_code=response.status_code) from exc

            observe_jobtread_request("ok", duration)
            logger.debug("jobtread.query", extra={"duration_ms": round(duration * 1000, 2)})
            return parsed


@lru_cache
def _client_singleton() -> JobTreadClient:
    settings = get_settings()
    return JobTreadClient(settings.jobtread_api_url, timeout=settings.jobtread_timeout_seconds)


def get_jobtread_client() -> JobTreadClient:
    return _client_singleton()
