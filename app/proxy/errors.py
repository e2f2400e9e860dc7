from typing import Optional

from app.models import ErrorEnvelope


class ProxyError(Exception):
    """A failure answered locally with the JSON error envelope."""

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        path: Optional[str] = None,
        upstream_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.path = path
        self.upstream_url = upstream_url

    def to_envelope(self) -> dict:
        return ErrorEnvelope(
            message=self.message,
            status=self.status_code,
            path=self.path,
            asaasUrl=self.upstream_url,
        ).model_dump(exclude_none=True)


class ConfigurationError(ProxyError):
    """No usable credential; the upstream is never called."""

    status_code = 401


class GatewayError(ProxyError):
    """The upstream call failed or answered with an unusable body."""

    status_code = 502


class RouteNotFoundError(ProxyError):
    status_code = 404


class InternalProxyError(ProxyError):
    status_code = 500
