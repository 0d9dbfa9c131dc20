"""
Bearer Authentication Tests.

Tests:
1. Unauthorized access (no token, bad scheme, rejected token)
2. Authorized access with an upstream-verified token
3. Public paths bypass authentication
"""

from unittest.mock import AsyncMock

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from oauth_broker.auth.middleware import BearerAuthMiddleware
from oauth_broker.auth.verifier import Identity

ISSUER = "https://broker.example.com"


@pytest.fixture
def verifier():
    mock = AsyncMock()
    mock.verify.side_effect = lambda token: (
        Identity(subject="user-123", email="user@example.com")
        if token == "good-token"
        else None
    )
    return mock


@pytest.fixture
def test_client(verifier):
    async def mcp_endpoint(request):
        return JSONResponse({"subject": request.state.identity.subject})

    async def public_endpoint(request):
        return JSONResponse({"public": True})

    app = Starlette(
        routes=[
            Route("/mcp", mcp_endpoint, methods=["GET", "POST"]),
            Route("/mcp/sub", mcp_endpoint),
            Route("/health", public_endpoint),
            Route("/token", public_endpoint, methods=["POST"]),
            Route("/mcpx", public_endpoint),
        ],
        middleware=[
            Middleware(
                BearerAuthMiddleware,
                verifier=verifier,
                issuer=ISSUER,
                protected_path="/mcp",
            )
        ],
    )
    return TestClient(app)


class TestUnauthorized:
    def test_no_token(self, test_client):
        response = test_client.get("/mcp")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == (
            f'Bearer resource_metadata="{ISSUER}/.well-known/oauth-protected-resource"'
        )

    def test_wrong_scheme(self, test_client):
        response = test_client.get("/mcp", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_rejected_token(self, test_client, verifier):
        response = test_client.get("/mcp", headers={"Authorization": "Bearer bad-token"})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"
        verifier.verify.assert_awaited_once_with("bad-token")

    def test_sub_path_is_protected(self, test_client):
        assert test_client.get("/mcp/sub").status_code == 401


class TestAuthorized:
    def test_valid_token(self, test_client):
        response = test_client.get("/mcp", headers={"Authorization": "Bearer good-token"})
        assert response.status_code == 200
        assert response.json() == {"subject": "user-123"}


class TestBypass:
    @pytest.mark.parametrize("path", ["/health", "/mcpx"])
    def test_public_paths(self, test_client, verifier, path):
        assert test_client.get(path).status_code == 200
        verifier.verify.assert_not_awaited()

    def test_oauth_endpoints(self, test_client):
        assert test_client.post("/token").status_code == 200
