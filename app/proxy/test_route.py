import json
from urllib.parse import parse_qsl

import pytest

from app.proxy.config import ProxySettings, UnmappedApiMode, UnmatchedPathMode

CORS_HEADERS = (
    "access-control-allow-origin",
    "access-control-allow-methods",
    "access-control-allow-headers",
)


class TestStatusRoutes:
    def test_root(self, client, upstream):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["ambiente"] == "production"
        assert body["versao"]
        assert upstream.requests == []

    def test_health(self, client, upstream):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["endpoint"] == "https://api.asaas.com/v3"
        assert body["timestamp"].endswith("Z")
        assert upstream.requests == []


class TestPreflight:
    @pytest.mark.parametrize(
        "path", ["/api/asaas/payments", "/health", "/anything/else", "/api/proxy"]
    )
    def test_options_is_204_with_cors_headers(self, client, upstream, path):
        response = client.options(path)

        assert response.status_code == 204
        assert response.content == b""
        for header in CORS_HEADERS:
            assert header in response.headers
        assert response.headers["access-control-allow-origin"] == "*"
        assert upstream.requests == []

    def test_allowed_methods_and_headers(self, client):
        response = client.options("/api/asaas/payments")

        methods = response.headers["access-control-allow-methods"]
        for method in ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"):
            assert method in methods
        assert "x-asaas-key" in response.headers["access-control-allow-headers"]
        assert "Content-Type" in response.headers["access-control-allow-headers"]


class TestForwardedRoutes:
    def test_mapped_route_is_rewritten(self, client, upstream):
        response = client.get("/api/asaas/balance")

        assert response.status_code == 200
        assert str(upstream.last.url) == "https://api.asaas.com/v3/finance/balance"
        for header in CORS_HEADERS:
            assert header in response.headers

    def test_query_parameters_are_forwarded(self, client, upstream):
        client.get(
            "/api/asaas/payments",
            params=[("status", "PENDING"), ("status", "RECEIVED"), ("offset", "20")],
        )

        assert parse_qsl(upstream.last.url.query.decode()) == [
            ("status", "PENDING"),
            ("status", "RECEIVED"),
            ("offset", "20"),
        ]

    def test_create_payment_relays_upstream_status(self, client, upstream):
        upstream.respond(201, '{"object":"payment","id":"pay_123"}')

        response = client.post(
            "/api/asaas/payments",
            json={"customer": "cus_1", "billingType": "BOLETO", "value": 99.9},
        )

        assert response.status_code == 201
        assert response.json() == {"object": "payment", "id": "pay_123"}
        assert upstream.last.method == "POST"
        assert json.loads(upstream.last.content)["billingType"] == "BOLETO"

    def test_path_and_slug_are_forwarded_on_direct_routes(self, client, upstream):
        client.get(
            "/api/asaas/customers", params={"slug": "acme", "path": "x", "name": "Ana"}
        )

        assert upstream.last.url.path == "/v3/customers"
        assert dict(upstream.last.url.params) == {"slug": "acme", "path": "x", "name": "Ana"}

    def test_non_standard_json_from_upstream_is_gateway_error(self, client, upstream):
        upstream.respond(200, '{"value": NaN}')

        response = client.get("/api/asaas/payments")

        assert response.status_code == 502
        assert response.json()["error"] is True
        for header in CORS_HEADERS:
            assert header in response.headers

    def test_unmapped_path_passes_through_by_default(self, client, upstream):
        client.patch("/api/asaas/subscriptions/sub_1", json={"value": 10})

        assert upstream.last.method == "PATCH"
        assert str(upstream.last.url) == "https://api.asaas.com/v3/subscriptions/sub_1"

    def test_encoded_segments_are_preserved(self, client, upstream):
        client.get("/api/asaas/customers/cus%2F1")

        assert upstream.last.url.raw_path == b"/v3/customers/cus%2F1"

    def test_unmapped_path_can_be_rejected(self, make_client, upstream, proxy_settings):
        settings = ProxySettings(
            api_key=proxy_settings.api_key, unmapped_api=UnmappedApiMode.NOT_FOUND
        )
        client = make_client(settings)

        response = client.get("/api/asaas/subscriptions")
        mapped = client.get("/api/asaas/payments")

        assert response.status_code == 404
        assert response.json()["error"] is True
        assert response.json()["path"] == "/api/asaas/subscriptions"
        assert "access-control-allow-origin" in response.headers
        assert mapped.status_code == 200
        assert len(upstream.requests) == 1

    def test_header_credential(self, make_client, upstream):
        client = make_client(ProxySettings())

        client.get("/api/asaas/customers", headers={"x-asaas-key": "$header_key"})

        assert upstream.last.headers["access_token"] == "$header_key"

    def test_missing_credential_is_401(self, make_client, upstream):
        client = make_client(ProxySettings())

        response = client.get("/api/asaas/customers")

        assert response.status_code == 401
        assert response.json()["error"] is True
        assert upstream.requests == []

    def test_html_block_page_is_502(self, client, upstream):
        upstream.respond(403, "<html><body>Access denied</body></html>")

        response = client.get("/api/asaas/payments")

        assert response.status_code == 502
        assert "blocked" in response.json()["message"]
        assert "Access denied" not in response.text

    def test_malformed_json_body_is_internal_error(self, client, upstream):
        response = client.post(
            "/api/asaas/customers",
            content=b'{"name": ',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 500
        assert response.json()["error"] is True
        assert response.json()["message"]
        assert upstream.requests == []

    def test_plain_text_body_is_forwarded_unchanged(self, client, upstream):
        client.post(
            "/api/asaas/customers",
            content=b"name=Ana",
            headers={"content-type": "text/plain"},
        )

        assert upstream.last.content == b"name=Ana"


class TestWebhook:
    def test_webhook_is_acknowledged_locally(self, client, upstream):
        response = client.post(
            "/api/asaas/webhook",
            json={"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_1"}},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert upstream.requests == []

    def test_webhook_accepts_non_json(self, client, upstream):
        response = client.post(
            "/api/asaas/webhook", content=b"not json", headers={"content-type": "text/plain"}
        )

        assert response.json() == {"received": True}


class TestQueryRouted:
    def test_forwards_and_drops_routing_parameter(self, client, upstream):
        response = client.get(
            "/api/proxy", params={"path": "api/asaas/payments", "customer": "cus_9"}
        )

        assert response.status_code == 200
        assert upstream.last.url.path == "/v3/payments"
        assert dict(upstream.last.url.params) == {"customer": "cus_9"}

    def test_route_table_applies(self, client, upstream):
        client.get("/api/proxy", params=[("slug", "api"), ("slug", "asaas"), ("slug", "balance")])

        assert upstream.last.url.path == "/v3/finance/balance"
        assert "slug" not in upstream.last.url.params

    @pytest.mark.parametrize("params", [{}, {"path": "health"}])
    def test_health(self, client, upstream, params):
        response = client.get("/api/proxy", params=params)

        assert response.json()["status"] == "ok"
        assert "timestamp" in response.json()
        assert upstream.requests == []

    @pytest.mark.parametrize("routed", ["api/asaas", "api/asaas/"])
    def test_bare_prefix_is_not_forwarded(self, client, upstream, routed):
        response = client.get("/api/proxy", params={"path": routed})

        assert response.json() == {"status": "ok", "path": "api/asaas"}
        assert upstream.requests == []

    def test_non_api_route_is_echoed(self, client, upstream):
        response = client.get("/api/proxy", params={"path": "dashboard"})

        assert response.json() == {"status": "ok", "path": "dashboard"}
        assert upstream.requests == []


class TestUnmatchedPaths:
    def test_echo_by_default(self, client, upstream):
        response = client.get("/some/page")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "path": "some/page"}
        assert upstream.requests == []

    def test_not_found_mode(self, make_client, upstream, proxy_settings):
        client = make_client(
            ProxySettings(
                api_key=proxy_settings.api_key,
                unmatched_paths=UnmatchedPathMode.NOT_FOUND,
            )
        )

        response = client.delete("/v3/payments/pay_1")

        assert response.status_code == 404
        assert response.json()["error"] is True
        assert "access-control-allow-origin" in response.headers
        assert upstream.requests == []


def test_custom_prefix(make_client, upstream, proxy_settings):
    client = make_client(ProxySettings(api_key=proxy_settings.api_key, prefix="/asaas"))

    client.get("/asaas/customers")
    echoed = client.get("/api/asaas/customers")

    assert str(upstream.last.url) == "https://api.asaas.com/v3/customers"
    assert echoed.json() == {"status": "ok", "path": "api/asaas/customers"}
    assert len(upstream.requests) == 1
