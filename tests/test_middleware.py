import hashlib

import pytest
from starlette.requests import Request

from chat_gateway.middleware.metrics import normalize_endpoint
from chat_gateway.middleware.rate_limit import client_identifier, get_client_ip


def _request(headers=None, client=("10.0.0.5", 1234), user=None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "state": {"user": user},
    }
    return Request(scope)


@pytest.mark.parametrize("headers,expected", [
    ({"CF-Connecting-IP": "8.8.8.8"}, "8.8.8.8"),
    ({"X-Forwarded-For": "10.1.1.1, 1.1.1.1"}, "1.1.1.1"),
    ({"X-Forwarded-For": "192.168.0.2", "X-Real-IP": "9.9.9.9"}, "9.9.9.9"),
    ({"X-Forwarded-For": "garbage"}, "10.0.0.5"),
    ({}, "10.0.0.5"),
])
def test_get_client_ip(headers, expected):
    assert get_client_ip(_request(headers)) == expected


def test_get_client_ip_without_peer():
    assert get_client_ip(_request(client=None)) == "127.0.0.1"


def test_client_identifier():
    assert client_identifier(_request(user={"sub": 42})) == "user_42"
    expected = "ip_" + hashlib.md5(b"8.8.8.8").hexdigest()
    assert client_identifier(_request({"X-Real-IP": "8.8.8.8"})) == expected


def test_normalize_endpoint():
    assert normalize_endpoint("/api/v1/items/123") == "/api/v1/items/{id}"
    assert normalize_endpoint(
        "/sessions/0f8fad5b-d9cb-469f-a165-70867728950e/close"
    ) == "/sessions/{uuid}/close"
