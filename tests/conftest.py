"""
Shared pytest fixtures for the broker tests.

The upstream identity provider is replaced by an httpx.MockTransport, so no
test touches the network. Time is driven by a FakeClock shared by the
store, the state codec and the broker.
"""

from urllib.parse import parse_qs, parse_qsl, urlsplit

import httpx
import pytest
from starlette.testclient import TestClient

from oauth_broker.auth.pkce import generate_pkce_pair
from oauth_broker.auth.setup import create_app
from oauth_broker.config import Settings
from oauth_broker.core.context import build_broker_context

ISSUER = "https://broker.example.com"
UPSTREAM = "https://idp.example.com"

BROWSER_REDIRECT = "https://claude.ai/api/mcp/auth_callback"
LOOPBACK_DYNAMIC = "http://127.0.0.1:53682/callback"
LOOPBACK_FIXED = "http://localhost:6274/oauth/callback"


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UpstreamStub:
    """Scriptable upstream provider behind httpx.MockTransport."""

    def __init__(self):
        self.token_requests: list[dict[str, str]] = []
        self.userinfo_requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_payload = {
            "access_token": "upstream-access-token",
            "token_type": "Bearer",
            "expires_in": 3599,
            "refresh_token": "upstream-refresh-token",
            "id_token": "upstream-id-token",
            "scope": "openid email profile",
        }
        self.token_timeout = False
        self.userinfo_status = 200
        self.userinfo_payload = {
            "sub": "user-123",
            "email": "user@example.com",
            "name": "Test User",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            self.token_requests.append(dict(parse_qsl(request.content.decode())))
            if self.token_timeout:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(self.token_status, json=self.token_payload)
        if request.url.path == "/userinfo":
            self.userinfo_requests.append(request)
            return httpx.Response(self.userinfo_status, json=self.userinfo_payload)
        return httpx.Response(404)


def query_of(url: str) -> dict[str, str]:
    """Single-valued query parameters of a URL."""
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def make_settings(**overrides) -> Settings:
    values = {
        "public_base_url": ISSUER,
        "upstream_client_id": "upstream-client-id",
        "upstream_client_secret": "upstream-client-secret",
        "upstream_authorization_endpoint": f"{UPSTREAM}/authorize",
        "upstream_token_endpoint": f"{UPSTREAM}/token",
        "upstream_userinfo_endpoint": f"{UPSTREAM}/userinfo",
        "state_secret_key": "test-state-secret",
        "cors_allow_origins": "*",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def upstream_stub():
    return UpstreamStub()


@pytest.fixture
def http_client(upstream_stub):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream_stub.handler))


@pytest.fixture
def context(settings, http_client, clock):
    return build_broker_context(settings, http_client=http_client, clock=clock)


@pytest.fixture
def broker(context):
    return context.broker


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def client(context):
    """TestClient over the standalone app; redirects are not followed."""
    with TestClient(create_app(context), follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def pkce_pair():
    return generate_pkce_pair()
