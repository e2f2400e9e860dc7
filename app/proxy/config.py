import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Tuple

from app.proxy.routing import DEFAULT_ROUTES, ROUTING_QUERY_PARAMS, RouteTable

logger = logging.getLogger("uvicorn.error")

PRODUCTION_BASE_URL = "https://api.asaas.com/v3"
SANDBOX_BASE_URL = "https://sandbox.asaas.com/api/v3"
ENVIRONMENT_BASE_URLS = {
    "production": PRODUCTION_BASE_URL,
    "sandbox": SANDBOX_BASE_URL,
}

# Asaas keys start with "$", which some hosting platforms expand or drop
# from stored environment values.
CREDENTIAL_SENTINEL = "$"
CREDENTIAL_HEADER = "x-asaas-key"
UPSTREAM_CREDENTIAL_HEADER = "access_token"

DEFAULT_PREFIX = "/api/asaas"
DEFAULT_TIMEOUT = 15.0
DEFAULT_USER_AGENT = "GestaoAsaas/1.0"


class UnmappedApiMode(str, Enum):
    """What to do with prefixed paths that are not in the route table."""

    PASSTHROUGH = "passthrough"
    NOT_FOUND = "not_found"


class UnmatchedPathMode(str, Enum):
    """What to do with paths outside the routing prefix."""

    ECHO = "echo"
    NOT_FOUND = "not_found"


def restore_sentinel(value: str, sentinel: str = CREDENTIAL_SENTINEL) -> str:
    if value and not value.startswith(sentinel):
        value = sentinel + value
    return value.strip()


def _env_flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_choice(raw: Optional[str], enum_cls, default, name: str):
    if not raw:
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        logger.warning(
            f"[Config] Ignoring {name}={raw!r}; expected one of "
            f"{', '.join(m.value for m in enum_cls)}"
        )
        return default


@dataclass(frozen=True)
class ProxySettings:
    """
    Process-wide proxy configuration, loaded once at startup.

    ``api_key`` is the server-side credential with the sentinel already
    restored; ``api_key_source`` names the variable it came from.
    """

    api_key: str = ""
    api_key_source: str = ""
    environment: str = "production"
    base_url: str = PRODUCTION_BASE_URL
    prefix: str = DEFAULT_PREFIX
    timeout: float = DEFAULT_TIMEOUT
    unmapped_api: UnmappedApiMode = UnmappedApiMode.PASSTHROUGH
    unmatched_paths: UnmatchedPathMode = UnmatchedPathMode.ECHO
    user_agent: str = DEFAULT_USER_AGENT
    routing_params: Tuple[str, ...] = ROUTING_QUERY_PARAMS
    routes: RouteTable = DEFAULT_ROUTES

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxySettings":
        env = os.environ if environ is None else environ

        raw_key = (env.get("ASAAS_API_KEY_RAW") or "").strip()
        plain_key = (env.get("ASAAS_API_KEY") or "").strip()
        if raw_key:
            api_key, source = restore_sentinel(raw_key), "ASAAS_API_KEY_RAW"
        elif plain_key:
            if _env_flag(env.get("PROXY_RESTORE_SENTINEL"), True):
                plain_key = restore_sentinel(plain_key)
            api_key, source = plain_key, "ASAAS_API_KEY"
        else:
            api_key, source = "", ""

        environment = (env.get("ASAAS_ENV") or "production").strip().lower()
        if environment not in ENVIRONMENT_BASE_URLS:
            logger.warning(
                f"[Config] Unknown ASAAS_ENV={environment!r}, using production"
            )
            environment = "production"
        base_url = (env.get("ASAAS_BASE_URL") or "").strip().rstrip("/")
        if not base_url:
            base_url = ENVIRONMENT_BASE_URLS[environment]

        prefix = "/" + (env.get("PROXY_PREFIX") or DEFAULT_PREFIX).strip().strip("/")

        return cls(
            api_key=api_key,
            api_key_source=source,
            environment=environment,
            base_url=base_url,
            prefix=prefix,
            timeout=float(env.get("PROXY_TIMEOUT") or DEFAULT_TIMEOUT),
            unmapped_api=_env_choice(
                env.get("PROXY_UNMAPPED_API"),
                UnmappedApiMode,
                UnmappedApiMode.PASSTHROUGH,
                "PROXY_UNMAPPED_API",
            ),
            unmatched_paths=_env_choice(
                env.get("PROXY_UNMATCHED_PATHS"),
                UnmatchedPathMode,
                UnmatchedPathMode.ECHO,
                "PROXY_UNMATCHED_PATHS",
            ),
            user_agent=(env.get("PROXY_USER_AGENT") or DEFAULT_USER_AGENT).strip(),
        )

    @property
    def api_key_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != CREDENTIAL_SENTINEL

    def resolve_credential(self, headers: Mapping[str, str]) -> str:
        """Server configuration first, then the per-request header, else empty."""
        if self.api_key_configured:
            return self.api_key
        supplied = (headers.get(CREDENTIAL_HEADER) or "").strip()
        if supplied == CREDENTIAL_SENTINEL:
            return ""
        return supplied

    def describe_credential_source(self) -> str:
        if self.api_key_source == "ASAAS_API_KEY_RAW":
            return "ASAAS_API_KEY_RAW configured"
        if self.api_key_source == "ASAAS_API_KEY":
            return "ASAAS_API_KEY configured (use _RAW)"
        return f"not configured (expecting {CREDENTIAL_HEADER} header)"
