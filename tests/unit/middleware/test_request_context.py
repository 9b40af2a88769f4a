"""
Request Context Middleware Tests.

WHAT: Unit tests for the RequestContextMiddleware.

WHY: Signatures store the signer's IP address and user agent, and logs
are correlated by request id. These tests ensure correct behavior for:
- Client IP extraction (direct and through proxies)
- Request ID generation and propagation
- Context availability only for the duration of a request

HOW: Raw ASGI scopes for IP extraction; a small FastAPI app through
TestClient for the middleware itself.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from proposal_engine.middleware.request_context import (
    REQUEST_ID_HEADER,
    RequestContextMiddleware,
    get_client_ip,
    get_request_context,
)


class TestGetClientIp:
    """Tests for the get_client_ip function."""

    def _make_request(self, headers: dict = None, client_host: str = None) -> Request:
        scope = {
            "type": "http",
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": (client_host, 12345) if client_host else None,
        }
        return Request(scope)

    def test_x_real_ip_takes_priority(self):
        request = self._make_request(
            headers={"X-Real-IP": " 192.168.1.100 ", "X-Forwarded-For": "203.0.113.50"},
            client_host="10.0.0.1",
        )
        assert get_client_ip(request) == "192.168.1.100"

    def test_first_forwarded_address(self):
        request = self._make_request(
            headers={"X-Forwarded-For": "203.0.113.50, 70.41.3.18, 150.172.238.178"},
            client_host="10.0.0.1",
        )
        assert get_client_ip(request) == "203.0.113.50"

    def test_direct_client(self):
        request = self._make_request(client_host="198.51.100.7")
        assert get_client_ip(request) == "198.51.100.7"

    def test_unknown(self):
        assert get_client_ip(self._make_request()) == "unknown"


class TestRequestContextMiddleware:

    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()
        app.add_middleware(RequestContextMiddleware)

        @app.get("/context")
        async def context_endpoint():
            context = get_request_context()
            return {
                "request_id": context.request_id,
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "path": context.path,
                "method": context.method,
            }

        return TestClient(app)

    def test_context_available_inside_request(self, client):
        response = client.get(
            "/context",
            headers={"User-Agent": "pytest-agent", "X-Real-IP": "203.0.113.9"},
        )

        body = response.json()
        assert body["ip_address"] == "203.0.113.9"
        assert body["user_agent"] == "pytest-agent"
        assert body["path"] == "/context"
        assert body["method"] == "GET"
        assert response.headers[REQUEST_ID_HEADER] == body["request_id"]

    def test_generates_request_id(self, client):
        first = client.get("/context").headers[REQUEST_ID_HEADER]
        second = client.get("/context").headers[REQUEST_ID_HEADER]

        assert len(first) == 36
        assert first != second

    def test_echoes_incoming_request_id(self, client):
        response = client.get("/context", headers={REQUEST_ID_HEADER: "req-123"})

        assert response.headers[REQUEST_ID_HEADER] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_no_context_outside_request(self, client):
        client.get("/context")

        assert get_request_context() is None
