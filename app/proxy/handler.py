import json
import logging
from enum import Enum
from typing import Optional

import httpx
from opentelemetry import trace

from app.proxy.config import ProxySettings, UPSTREAM_CREDENTIAL_HEADER
from app.proxy.cors import CORS_HEADERS
from app.proxy.errors import (
    ConfigurationError,
    GatewayError,
    InternalProxyError,
    ProxyError,
)
from app.proxy.models import (
    InboundRequest,
    ProxyResponse,
    UpstreamResponse,
    UpstreamTarget,
)
from app.proxy.routing import build_target, forwarded_query, strip_prefix
from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from app.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

BODY_METHODS = {"POST", "PUT", "PATCH"}

MISSING_CREDENTIAL_MESSAGE = (
    "Asaas API key is not configured on the server. "
    "Set ASAAS_API_KEY_RAW (without the leading $) or send the x-asaas-key header."
)
EMPTY_BODY_MESSAGE = "Asaas returned an empty response. Check the API key."
BLOCKED_MESSAGE = "Asaas returned an HTML page: request blocked or network error."
INVALID_BODY_MESSAGE = "Asaas returned a response that is not valid JSON."


class BodyKind(str, Enum):
    EMPTY = "empty"
    HTML = "html"
    JSON = "json"


def classify_body(text: Optional[str]) -> BodyKind:
    """Decide how an upstream body may be relayed, without parsing it."""
    stripped = (text or "").strip()
    if not stripped:
        return BodyKind.EMPTY
    if stripped.startswith("<"):
        return BodyKind.HTML
    return BodyKind.JSON


def encode_body(request: InboundRequest) -> Optional[bytes]:
    if request.method not in BODY_METHODS or request.body is None:
        return None
    if isinstance(request.body, str):
        return request.body.encode("utf-8")
    return json.dumps(request.body).encode("utf-8")


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


def error_response(error: ProxyError) -> ProxyResponse:
    return ProxyResponse(
        status_code=error.status_code,
        body=error.to_envelope(),
        headers=dict(CORS_HEADERS),
    )


class ForwardingHandler:
    """
    Forwards one inbound request to the Asaas API and relays the outcome.

    Every branch produces a ProxyResponse; nothing raised while forwarding
    reaches the caller. ``transport`` replaces the network layer of the
    httpx client, which is how tests stand in for the upstream.
    """

    def __init__(
        self,
        settings: ProxySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport

    async def handle(
        self, request: InboundRequest, resource_path: Optional[str] = None
    ) -> ProxyResponse:
        if request.method == "OPTIONS":
            return ProxyResponse(
                status_code=204, headers=dict(CORS_HEADERS), no_content=True
            )
        try:
            return await self._forward(request, resource_path)
        except ProxyError as e:
            return error_response(e)
        except Exception as e:
            log_exception_with_details(logger, "[Proxy]", e)
            return error_response(InternalProxyError(format_exception_message(e)))

    def target_for(
        self, request: InboundRequest, resource_path: Optional[str] = None
    ) -> UpstreamTarget:
        if resource_path is None:
            resource_path = strip_prefix(request.path, self.settings.prefix)
        query = forwarded_query(request.query, exclude=request.routing_params)
        return build_target(self.settings.base_url, resource_path, query)

    async def _forward(
        self, request: InboundRequest, resource_path: Optional[str]
    ) -> ProxyResponse:
        target = self.target_for(request, resource_path)

        credential = self.settings.resolve_credential(request.headers)
        if not credential:
            logger.error("[Proxy] API key missing, upstream not called")
            raise ConfigurationError(MISSING_CREDENTIAL_MESSAGE)

        content = encode_body(request)

        with traced_request(
            tracer,
            operation="asaas_proxy_request",
            start_message=(
                f"[Proxy] {request.method} /{target.resource_path} "
                f"| key: {credential}"
            ),
            credential=credential,
            extra_attrs={
                "proxy.method": request.method,
                "proxy.target_url": target.url,
            },
        ) as span:
            try:
                upstream = await self._send(request.method, target, credential, content)
            except httpx.TimeoutException as e:
                logger.error(
                    f"[Proxy] Timeout after {self.settings.timeout}s for {target.url}: {e}"
                )
                span.set_attribute("proxy.error", "timeout")
                raise GatewayError(
                    f"Asaas did not answer within {self.settings.timeout:g}s: "
                    f"{format_exception_message(e)}",
                    upstream_url=target.url,
                )
            except httpx.HTTPError as e:
                logger.error(f"[Proxy] Upstream call to {target.url} failed: {e}")
                span.set_attribute("proxy.error", "connection_failed")
                raise GatewayError(format_exception_message(e), upstream_url=target.url)

            span.set_attribute("proxy.status_code", upstream.status_code)
            return self._relay(upstream, target)

    async def _send(
        self,
        method: str,
        target: UpstreamTarget,
        credential: str,
        content: Optional[bytes],
    ) -> UpstreamResponse:
        headers = {
            UPSTREAM_CREDENTIAL_HEADER: credential,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.timeout),
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            response = await client.request(
                method=method,
                url=target.url,
                headers=headers,
                content=content,
            )
        return UpstreamResponse(status_code=response.status_code, text=response.text)

    def _relay(self, upstream: UpstreamResponse, target: UpstreamTarget) -> ProxyResponse:
        kind = classify_body(upstream.text)
        if kind is BodyKind.EMPTY:
            logger.error(f"[Proxy] Empty body from {target.url} ({upstream.status_code})")
            raise GatewayError(EMPTY_BODY_MESSAGE, upstream_url=target.url)
        if kind is BodyKind.HTML:
            logger.error(f"[Proxy] HTML body from {target.url} ({upstream.status_code})")
            raise GatewayError(BLOCKED_MESSAGE, upstream_url=target.url)

        try:
            payload = json.loads(upstream.text, parse_constant=_reject_constant)
        except ValueError:
            logger.error(f"[Proxy] Unparseable body from {target.url} ({upstream.status_code})")
            raise GatewayError(INVALID_BODY_MESSAGE, upstream_url=target.url)

        if upstream.status_code >= 400:
            logger.warning(
                f"[Proxy] Asaas {upstream.status_code}: {json.dumps(payload)[:500]}"
            )
        return ProxyResponse(
            status_code=upstream.status_code,
            body=payload,
            headers=dict(CORS_HEADERS),
        )
