"""Tests for the upstream provider client."""

import httpx
import pytest

from oauth_broker.auth.upstream import UpstreamProvider
from oauth_broker.core.exceptions import ServerError
from tests.conftest import UPSTREAM, UpstreamStub, make_settings, query_of


@pytest.fixture
def stub():
    return UpstreamStub()


@pytest.fixture
def provider(stub):
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub.handler))
    return UpstreamProvider.from_settings(make_settings(), http_client=client)


class TestAuthorizationUrl:
    def test_contains_callback_and_state(self, provider):
        url = provider.build_authorization_url(
            redirect_uri="https://broker.example.com/callback", state="opaque"
        )
        assert url.startswith(f"{UPSTREAM}/authorize?")
        params = query_of(url)
        assert params["client_id"] == "upstream-client-id"
        assert params["redirect_uri"] == "https://broker.example.com/callback"
        assert params["response_type"] == "code"
        assert params["scope"] == "openid email profile"
        assert params["state"] == "opaque"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert "code_challenge" not in params

    def test_with_challenge(self, provider):
        url = provider.build_authorization_url(
            redirect_uri="https://broker.example.com/callback",
            state="opaque",
            code_challenge="challenge",
        )
        params = query_of(url)
        assert params["code_challenge"] == "challenge"
        assert params["code_challenge_method"] == "S256"

    def test_extra_params_can_be_disabled(self):
        provider = UpstreamProvider.from_settings(
            make_settings(upstream_access_type="", upstream_prompt="")
        )
        params = query_of(provider.build_authorization_url(redirect_uri="x", state="s"))
        assert "access_type" not in params
        assert "prompt" not in params


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_success(self, provider, stub):
        tokens = await provider.exchange_code(
            "upstream-code", redirect_uri="https://broker.example.com/callback"
        )
        assert tokens.access_token == "upstream-access-token"
        assert tokens.id_token == "upstream-id-token"
        sent = stub.token_requests[0]
        assert sent["grant_type"] == "authorization_code"
        assert sent["code"] == "upstream-code"
        assert sent["redirect_uri"] == "https://broker.example.com/callback"
        assert sent["client_secret"] == "upstream-client-secret"
        assert "code_verifier" not in sent

    @pytest.mark.asyncio
    async def test_sends_verifier(self, provider, stub):
        await provider.exchange_code("c", redirect_uri="r", code_verifier="verifier")
        assert stub.token_requests[0]["code_verifier"] == "verifier"

    @pytest.mark.asyncio
    async def test_error_status_hides_body(self, provider, stub):
        stub.token_status = 400
        stub.token_payload = {"error": "invalid_grant", "error_description": "secret detail"}
        with pytest.raises(ServerError) as exc_info:
            await provider.exchange_code("c", redirect_uri="r")
        assert "secret detail" not in exc_info.value.description
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_timeout(self, provider, stub):
        stub.token_timeout = True
        with pytest.raises(ServerError, match="timed out"):
            await provider.exchange_code("c", redirect_uri="r")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, provider, stub):
        stub.token_payload = {"token_type": "Bearer"}
        with pytest.raises(ServerError):
            await provider.exchange_code("c", redirect_uri="r")

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, provider):
        await provider.aclose()
        assert not provider._http_client.is_closed
