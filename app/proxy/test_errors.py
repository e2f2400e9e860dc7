import pytest

from app.proxy.errors import (
    ConfigurationError,
    GatewayError,
    InternalProxyError,
    ProxyError,
    RouteNotFoundError,
)


@pytest.mark.parametrize(
    "error_cls, status",
    [
        (ConfigurationError, 401),
        (RouteNotFoundError, 404),
        (InternalProxyError, 500),
        (GatewayError, 502),
    ],
)
def test_status_per_failure_class(error_cls, status):
    error = error_cls("message")

    assert error.status_code == status
    assert error.to_envelope() == {"error": True, "message": "message", "status": status}


def test_optional_fields_are_included_when_set():
    error = GatewayError(
        "Asaas returned an empty response.",
        path="/api/asaas/payments",
        upstream_url="https://api.asaas.com/v3/payments",
    )

    assert error.to_envelope() == {
        "error": True,
        "message": "Asaas returned an empty response.",
        "status": 502,
        "path": "/api/asaas/payments",
        "asaasUrl": "https://api.asaas.com/v3/payments",
    }


def test_explicit_status_overrides_class_default():
    assert ProxyError("gone", status_code=410).to_envelope()["status"] == 410
