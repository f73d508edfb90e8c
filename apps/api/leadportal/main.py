from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from leadportal.api.routes import router as api_router
from leadportal.core.config import get_settings
from leadportal.core.errors import register_exception_handlers
from leadportal.identity.gateway import _gateway_singleton
from leadportal.jobtread.client import _client_singleton
from leadportal.logging import configure_logging
from leadportal.middleware.correlation_id import CorrelationIdMiddleware
from leadportal.middleware.request_logging import RequestLoggingMiddleware
from leadportal.notifications.openphone import _notifier_singleton
from leadportal.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("leadportal.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("system.started", extra={"reason": settings.app_env})
    yield
    for factory in (_client_singleton, _gateway_singleton, _notifier_singleton):
        if factory.cache_info().currsize:
            await factory().aclose()
            factory.cache_clear()
    logger.info("system.stopped")


app = FastAPI(title="Lead Portal API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
