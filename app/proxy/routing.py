"""
Mapping of inbound proxy paths onto the upstream Asaas URL space.

The inbound path is reduced to a resource path by stripping the routing
prefix (``/api/asaas`` by default). The resource path is then either looked
up in a route table of ``method + pattern -> upstream template`` entries, or
forwarded verbatim when the deployment allows unmapped passthrough.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

from app.proxy.models import UpstreamTarget

# Query parameters that only carry routing information for serverless
# catch-all deployments; they never reach the upstream.
ROUTING_QUERY_PARAMS = ("path", "slug")

_PLACEHOLDER = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def strip_prefix(path: str, prefix: str) -> str:
    """Remove the routing prefix and surrounding slashes from a request path."""
    normalized_prefix = prefix.strip("/")
    remainder = path.lstrip("/")
    if normalized_prefix:
        if remainder == normalized_prefix:
            return ""
        if remainder.startswith(normalized_prefix + "/"):
            remainder = remainder[len(normalized_prefix) + 1 :]
    return remainder.strip("/")


def forwarded_query(
    pairs: Iterable[Tuple[str, str]],
    exclude: Sequence[str] = ROUTING_QUERY_PARAMS,
) -> str:
    """Re-serialize query pairs, dropping the routing parameters."""
    kept = [(key, value) for key, value in pairs if key not in exclude]
    return urlencode(kept, quote_via=quote)


def segments_from_query(values: Sequence[str]) -> str:
    """
    Join a query-carried route into a path.

    Accepts either one ``a/b/c`` value or the segments as repeated values.
    """
    segments = []
    for value in values:
        segments.extend(part for part in value.split("/") if part)
    return "/".join(segments)


def build_target(base_url: str, resource_path: str, query: str = "") -> UpstreamTarget:
    return UpstreamTarget(base_url=base_url, resource_path=resource_path, query=query)


@lru_cache(maxsize=None)
def _compile(pattern: str) -> "re.Pattern[str]":
    parts = []
    for segment in pattern.strip("/").split("/"):
        placeholder = _PLACEHOLDER.match(segment)
        if placeholder:
            parts.append(f"(?P<{placeholder.group(1)}>[^/]+)")
        else:
            parts.append(re.escape(segment))
    return re.compile("^" + "/".join(parts) + "$")


@dataclass(frozen=True)
class Route:
    """A known upstream resource, e.g. ``GET balance -> finance/balance``."""

    methods: Tuple[str, ...]
    pattern: str
    upstream: str

    def match(self, method: str, resource_path: str) -> Optional[str]:
        if method.upper() not in self.methods:
            return None
        found = _compile(self.pattern).match(resource_path.strip("/"))
        if not found:
            return None
        return self.upstream.format(**found.groupdict()).strip("/")


@dataclass(frozen=True)
class RouteTable:
    routes: Tuple[Route, ...] = ()

    def resolve(self, method: str, resource_path: str) -> Optional[str]:
        """Return the upstream path for a request, or None when unmapped."""
        for route in self.routes:
            upstream = route.match(method, resource_path)
            if upstream is not None:
                return upstream
        return None


DEFAULT_ROUTES = RouteTable(
    routes=(
        Route(("GET",), "balance", "finance/balance"),
        Route(("GET", "POST"), "accounts", "accounts"),
        Route(("GET",), "accounts/{id}", "accounts/{id}"),
        Route(("GET",), "accounts/{id}/balance", "accounts/{id}/balance"),
        Route(("GET", "POST"), "payments", "payments"),
        Route(("GET", "DELETE"), "payments/{id}", "payments/{id}"),
        Route(("GET",), "payments/{id}/pixQrCode", "payments/{id}/pixQrCode"),
        Route(
            ("GET",),
            "payments/{id}/identificationField",
            "payments/{id}/identificationField",
        ),
        Route(("GET", "POST"), "customers", "customers"),
        Route(("PUT", "DELETE"), "customers/{id}", "customers/{id}"),
        Route(("GET", "POST"), "transfers", "transfers"),
    )
)
