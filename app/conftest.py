import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from app.proxy.config import ProxySettings

TEST_API_KEY = "$aact_YTU5YTE0M2M2N2I4MTliNzk0YTI5N2U5MzdjNWZmNDQ6OjAwMDAwMDAwMDAwMDAwMDAwMDA6OiRhYWNoXzQ"


class RecordingUpstream:
    """Stands in for the Asaas API and records every request it receives."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.text = '{"object":"list","hasMore":false,"totalCount":0,"data":[]}'
        self.error = None

    def respond(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text

    def fail_with(self, error: Exception) -> None:
        self.error = error

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def proxy_settings():
    return ProxySettings(api_key=TEST_API_KEY, api_key_source="ASAAS_API_KEY_RAW")


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def make_client(upstream, proxy_settings):
    """Build a TestClient around a fresh app wired to the recording upstream."""
    from app.server import create_app

    def _make(settings: ProxySettings = None) -> TestClient:
        app = create_app(
            settings or proxy_settings,
            transport=upstream.transport,
            registry=CollectorRegistry(),
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
