import logging
from typing import Optional, Sequence

import httpx
import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import REGISTRY, CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.proxy.config import ProxySettings
from app.proxy.cors import cors_middleware
from app.proxy.errors import ProxyError
from app.proxy.handler import ForwardingHandler
from app.proxy.route import (
    api_router,
    fallback_router,
    http_error_handler,
    internal_error_handler,
    proxy_error_handler,
    router,
)
from app.vars import (
    HOST,
    LOG_LEVEL,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PORT,
    SERVICE_DISPLAY_NAME,
    SERVICE_NAME,
    SERVICE_VERSION,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops the per-chunk ASGI body spans, which would
    otherwise outnumber the proxy spans in every trace.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )


def log_startup(settings: ProxySettings) -> None:
    logger.info(f"[Startup] {SERVICE_DISPLAY_NAME} {SERVICE_VERSION}")
    logger.info(f"[Startup] Environment : {settings.environment}")
    logger.info(f"[Startup] Asaas       : {settings.base_url}")
    logger.info(f"[Startup] Prefix      : {settings.prefix}/* (unmapped: {settings.unmapped_api.value})")
    logger.info(f"[Startup] API key     : {settings.describe_credential_source()}")
    if settings.api_key_source == "ASAAS_API_KEY":
        logger.warning(
            "[Startup] ASAAS_API_KEY is set; prefer ASAAS_API_KEY_RAW if the "
            "platform strips the leading $"
        )


def create_app(
    settings: Optional[ProxySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Build the proxy application.

    ``settings`` defaults to the process environment, read once here.
    ``transport`` and ``registry`` let tests replace the upstream network and
    keep metrics of separate app instances apart.
    """
    settings = settings or ProxySettings.from_env()
    registry = registry or REGISTRY

    app = FastAPI(title=SERVICE_DISPLAY_NAME, version=SERVICE_VERSION)
    app.state.proxy_settings = settings
    app.state.forwarding_handler = ForwardingHandler(settings, transport=transport)

    app.middleware("http")(cors_middleware)
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    Instrumentator(registry=registry).instrument(app).expose(app)
    app_info = Info("fastapi_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME, "version": SERVICE_VERSION})

    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    app.include_router(api_router, prefix=settings.prefix)
    app.include_router(fallback_router)

    log_startup(settings)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL)
