from .config import ProxySettings, UnmappedApiMode, UnmatchedPathMode
from .errors import (
    ConfigurationError,
    GatewayError,
    InternalProxyError,
    ProxyError,
    RouteNotFoundError,
)
from .handler import ForwardingHandler, classify_body
from .models import InboundRequest, ProxyResponse, UpstreamResponse, UpstreamTarget
from .routing import Route, RouteTable

__all__ = [
    "ProxySettings",
    "UnmappedApiMode",
    "UnmatchedPathMode",
    "ConfigurationError",
    "GatewayError",
    "InternalProxyError",
    "ProxyError",
    "RouteNotFoundError",
    "ForwardingHandler",
    "classify_body",
    "InboundRequest",
    "ProxyResponse",
    "UpstreamResponse",
    "UpstreamTarget",
    "Route",
    "RouteTable",
]
