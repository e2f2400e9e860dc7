import json
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.models import HealthStatus, ServiceStatus, UnmatchedPath, WebhookAck
from app.proxy.config import ProxySettings, UnmappedApiMode, UnmatchedPathMode
from app.proxy.cors import CORS_HEADERS
from app.proxy.errors import InternalProxyError, ProxyError, RouteNotFoundError
from app.proxy.handler import BODY_METHODS, ForwardingHandler
from app.proxy.models import InboundRequest, ProxyResponse
from app.proxy.routing import segments_from_query, strip_prefix
from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from app.vars import SERVICE_DISPLAY_NAME, SERVICE_VERSION

logger = logging.getLogger("uvicorn.error")

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
QUERY_ROUTED_PATH = "/api/proxy"

# Routes outside the routing prefix: status, health and the query-routed
# entry point used by serverless catch-all deployments.
router = APIRouter()
# Routes under the routing prefix; included with ``prefix=settings.prefix``.
api_router = APIRouter()
# Registered last: anything nobody else claimed. Never forwards.
fallback_router = APIRouter()


def get_settings(request: Request) -> ProxySettings:
    return request.app.state.proxy_settings


def get_handler(request: Request) -> ForwardingHandler:
    return request.app.state.forwarding_handler


def to_http_response(result: ProxyResponse) -> Response:
    if result.no_content:
        return Response(status_code=result.status_code, headers=dict(result.headers))
    return JSONResponse(
        content=result.body,
        status_code=result.status_code,
        headers=dict(result.headers),
    )


async def _read_body(request: Request):
    """Parse the request body: JSON unless declared otherwise, None when absent."""
    if request.method not in BODY_METHODS:
        return None
    raw = await request.body()
    if not raw.strip():
        return None
    content_type = request.headers.get("content-type", "")
    if content_type and "json" not in content_type:
        return raw.decode("utf-8", errors="replace")
    return json.loads(raw)


async def inbound_from_request(
    request: Request,
    path: Optional[str] = None,
    routing_params: Tuple[str, ...] = (),
) -> InboundRequest:
    if path is None:
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.split(b"?", 1)[0].decode("latin-1")
        else:
            path = request.url.path
    return InboundRequest(
        method=request.method.upper(),
        path=path,
        query=tuple(request.query_params.multi_items()),
        body=await _read_body(request),
        headers={name.lower(): value for name, value in request.headers.items()},
        routing_params=routing_params,
    )


def health_payload(settings: ProxySettings) -> HealthStatus:
    return HealthStatus(
        sistema=SERVICE_DISPLAY_NAME,
        ambiente=settings.environment,
        endpoint=settings.base_url,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )


def unmatched(path: str, settings: ProxySettings):
    if settings.unmatched_paths is UnmatchedPathMode.NOT_FOUND:
        raise RouteNotFoundError("Route not found", path=path)
    return UnmatchedPath(path=path)


async def dispatch(
    request: Request,
    settings: ProxySettings,
    handler: ForwardingHandler,
    path: Optional[str] = None,
    routing_params: Tuple[str, ...] = (),
) -> Response:
    """Resolve a prefixed request against the route table and forward it."""
    try:
        inbound = await inbound_from_request(request, path, routing_params)
    except Exception as e:
        log_exception_with_details(logger, "[Proxy]", e)
        raise InternalProxyError(format_exception_message(e))

    resource_path = strip_prefix(inbound.path, settings.prefix)
    upstream_path = settings.routes.resolve(inbound.method, resource_path)
    if upstream_path is None:
        if settings.unmapped_api is UnmappedApiMode.NOT_FOUND:
            logger.info(f"[Proxy] No route for {inbound.method} /{resource_path}")
            raise RouteNotFoundError(
                f"No route for {inbound.method} /{resource_path}", path=inbound.path
            )
        upstream_path = resource_path

    return to_http_response(await handler.handle(inbound, upstream_path))


@router.get("/", response_model=ServiceStatus)
async def service_status(settings: ProxySettings = Depends(get_settings)):
    return ServiceStatus(
        sistema=SERVICE_DISPLAY_NAME,
        ambiente=settings.environment,
        versao=SERVICE_VERSION,
    )


@router.get("/health", response_model=HealthStatus)
async def health(settings: ProxySettings = Depends(get_settings)):
    return health_payload(settings)


@router.api_route(QUERY_ROUTED_PATH, methods=FORWARDED_METHODS)
async def query_routed(
    request: Request,
    settings: ProxySettings = Depends(get_settings),
    handler: ForwardingHandler = Depends(get_handler),
):
    """
    Entry point for platforms that hand the original path over as a query
    parameter (``/api/proxy?path=api/asaas/payments&status=PENDING``).
    """
    values = []
    for name in settings.routing_params:
        values.extend(request.query_params.getlist(name))
    routed = segments_from_query(values)

    if not routed or routed == "health":
        return health_payload(settings)

    # A bare prefix names no resource and is not forwarded.
    prefix = settings.prefix.strip("/")
    if routed.startswith(prefix + "/"):
        return await dispatch(
            request,
            settings,
            handler,
            path="/" + routed,
            routing_params=settings.routing_params,
        )

    return unmatched(routed, settings)


@api_router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request):
    raw = await request.body()
    event = "unknown"
    if raw.strip():
        try:
            payload = json.loads(raw)
        except ValueError as e:
            logger.warning(f"[Webhook] Body is not JSON ({e}), {len(raw)} bytes")
        else:
            if isinstance(payload, dict) and payload.get("event"):
                event = str(payload["event"])
    logger.info(f"[Webhook] Received event: {event}")
    return WebhookAck()


@api_router.api_route("/{resource_path:path}", methods=FORWARDED_METHODS)
async def forward(
    request: Request,
    resource_path: str,
    settings: ProxySettings = Depends(get_settings),
    handler: ForwardingHandler = Depends(get_handler),
):
    return await dispatch(request, settings, handler)


@fallback_router.api_route("/{path:path}", methods=FORWARDED_METHODS)
async def fallback(path: str, settings: ProxySettings = Depends(get_settings)):
    return unmatched(path, settings)


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_exception_with_details(logger, "[Proxy]", exc)
    envelope = InternalProxyError(format_exception_message(exc), path=request.url.path)
    # Rendered by the outermost server-error middleware, past the CORS middleware.
    return JSONResponse(
        status_code=envelope.status_code,
        content=envelope.to_envelope(),
        headers=dict(CORS_HEADERS),
    )


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    envelope = ProxyError(str(exc.detail), status_code=exc.status_code, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope.to_envelope(),
        headers=getattr(exc, "headers", None),
    )
