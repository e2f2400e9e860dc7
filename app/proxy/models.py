from dataclasses import dataclass, field
from typing import Any, Mapping, Tuple


@dataclass(frozen=True)
class InboundRequest:
    """
    A client request as seen by the forwarding handler.

    ``path`` is the raw (still percent-encoded) request path, ``query`` keeps
    repeated keys as separate pairs and ``headers`` uses lowercase names.
    ``routing_params`` names query parameters that only carried the route
    (query-routed entry point) and are left out of the forwarded query.
    """

    method: str
    path: str
    query: Tuple[Tuple[str, str], ...] = ()
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    routing_params: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpstreamTarget:
    base_url: str
    resource_path: str
    query: str = ""

    @property
    def url(self) -> str:
        url = f"{self.base_url.rstrip('/')}/{self.resource_path.lstrip('/')}"
        if self.query:
            url = f"{url}?{self.query}"
        return url


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    text: str


@dataclass(frozen=True)
class ProxyResponse:
    """What the caller receives: a status, an optional JSON body and headers."""

    status_code: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    no_content: bool = False
