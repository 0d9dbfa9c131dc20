"""Tests for AuthorizationBroker.handle_callback."""

import pytest

from oauth_broker.auth.clients import DeliveryMode
from oauth_broker.auth.models import AuthorizationRequest, CallbackRequest
from oauth_broker.auth.state import EncodedState
from oauth_broker.core.exceptions import (
    AuthorizationFailed,
    InvalidClient,
    InvalidGrant,
    InvalidState,
    ServerError,
)
from tests.conftest import (
    BROWSER_REDIRECT,
    ISSUER,
    LOOPBACK_DYNAMIC,
    LOOPBACK_FIXED,
    query_of,
)


async def start(broker, redirect_uri=BROWSER_REDIRECT, state="client-state"):
    """Run /authorize and return (upstream state blob, broker code)."""
    url = await broker.authorize(
        AuthorizationRequest(
            response_type="code",
            client_id="client-1",
            redirect_uri=redirect_uri,
            state=state,
            scope="openid",
        )
    )
    raw_state = query_of(url)["state"]
    return raw_state, broker.state_codec.decode(raw_state).broker_code


class TestForwardCode:
    @pytest.mark.asyncio
    async def test_browser_client_receives_broker_code(self, broker, store, upstream_stub):
        raw_state, code = await start(broker)
        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert result.mode is DeliveryMode.FORWARD_CODE
        assert result.redirect_url.startswith(f"{BROWSER_REDIRECT}?")
        assert query_of(result.redirect_url) == {"code": code, "state": "client-state"}

        assert upstream_stub.token_requests[0]["redirect_uri"] == f"{ISSUER}/callback"
        record = await store.get(code)
        assert record.tokens.access_token == "upstream-access-token"

    @pytest.mark.asyncio
    async def test_loopback_dynamic_client(self, broker):
        raw_state, code = await start(broker, redirect_uri=LOOPBACK_DYNAMIC)
        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert result.redirect_url.startswith(f"{LOOPBACK_DYNAMIC}?")
        assert query_of(result.redirect_url)["code"] == code

    @pytest.mark.asyncio
    async def test_missing_client_state_is_omitted(self, broker):
        raw_state, _ = await start(broker, state=None)
        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert "state" not in query_of(result.redirect_url)

    @pytest.mark.asyncio
    async def test_second_callback_for_same_code(self, broker, store):
        raw_state, _ = await start(broker)
        await broker.handle_callback(CallbackRequest(code="c1", state=raw_state))
        with pytest.raises(InvalidGrant) as exc_info:
            await broker.handle_callback(CallbackRequest(code="c2", state=raw_state))
        assert exc_info.value.redirect_uri == BROWSER_REDIRECT
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_expired_broker_code(self, broker, clock):
        broker.state_codec.ttl_seconds = 3600
        raw_state, _ = await start(broker)
        clock.advance(601)
        with pytest.raises(InvalidGrant):
            await broker.handle_callback(CallbackRequest(code="c", state=raw_state))

    @pytest.mark.asyncio
    async def test_deferred_exchange(self, broker, store, upstream_stub):
        broker.defer_upstream_exchange = True
        raw_state, code = await start(broker)
        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert query_of(result.redirect_url)["code"] == code
        assert upstream_stub.token_requests == []
        record = await store.get(code)
        assert record.upstream_code == "upstream-code"
        assert record.tokens is None


class TestFixedLoopback:
    @pytest.mark.asyncio
    async def test_broker_code_is_forwarded(self, broker, store):
        raw_state, code = await start(broker, redirect_uri=LOOPBACK_FIXED)
        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert result.mode is DeliveryMode.FORWARD_CODE
        assert result.payload is None
        assert query_of(result.redirect_url) == {"code": code, "state": "client-state"}
        record = await store.get(code)
        assert record.tokens.access_token == "upstream-access-token"

    @pytest.mark.asyncio
    async def test_failure_redirected_to_client(self, broker, store, upstream_stub):
        upstream_stub.token_status = 500
        raw_state, code = await start(broker, redirect_uri=LOOPBACK_FIXED)
        with pytest.raises(ServerError) as exc_info:
            await broker.handle_callback(CallbackRequest(code="c", state=raw_state))
        assert exc_info.value.redirect_uri == LOOPBACK_FIXED
        assert await store.get(code) is None


class TestTokenPayload:
    @pytest.mark.asyncio
    async def test_direct_flow_sends_verifier_upstream(self, broker, upstream_stub):
        url = await broker.start_direct_flow()
        raw_state = query_of(url)["state"]
        verifier = broker.state_codec.decode(raw_state).code_verifier

        result = await broker.handle_callback(
            CallbackRequest(code="upstream-code", state=raw_state)
        )
        assert result.mode is DeliveryMode.TOKEN_PAYLOAD
        assert result.payload["refresh_token"] == "upstream-refresh-token"
        assert upstream_stub.token_requests[0]["code_verifier"] == verifier


class TestCallbackFailures:
    @pytest.mark.asyncio
    async def test_upstream_error_forwarded_to_client(self, broker, store):
        raw_state, code = await start(broker)
        with pytest.raises(AuthorizationFailed) as exc_info:
            await broker.handle_callback(
                CallbackRequest(error="access_denied", state=raw_state)
            )
        assert exc_info.value.error == "access_denied"
        assert exc_info.value.redirect_uri == BROWSER_REDIRECT
        assert exc_info.value.state == "client-state"
        assert await store.get(code) is None

    @pytest.mark.asyncio
    async def test_upstream_error_with_bad_state_is_json(self, broker):
        with pytest.raises(AuthorizationFailed) as exc_info:
            await broker.handle_callback(
                CallbackRequest(error="access_denied", state="garbage")
            )
        assert exc_info.value.redirect_uri is None

    @pytest.mark.asyncio
    async def test_invalid_state(self, broker):
        with pytest.raises(InvalidState) as exc_info:
            await broker.handle_callback(CallbackRequest(code="c", state="garbage"))
        assert exc_info.value.redirect_uri is None

    @pytest.mark.asyncio
    async def test_unsupported_redirect_in_state(self, broker):
        raw_state = broker.state_codec.encode(
            EncodedState(redirect_uri="https://evil.example/cb", broker_code="x")
        )
        with pytest.raises(InvalidClient) as exc_info:
            await broker.handle_callback(CallbackRequest(code="c", state=raw_state))
        assert exc_info.value.redirect_uri is None
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_forwarding_client_without_broker_code(self, broker):
        raw_state = broker.state_codec.encode(EncodedState(redirect_uri=BROWSER_REDIRECT))
        with pytest.raises(InvalidState):
            await broker.handle_callback(CallbackRequest(code="c", state=raw_state))

    @pytest.mark.asyncio
    async def test_upstream_exchange_failure_discards_code(
        self, broker, store, upstream_stub
    ):
        upstream_stub.token_status = 400
        upstream_stub.token_payload = {"error": "invalid_grant", "error_description": "leak"}
        raw_state, code = await start(broker)
        with pytest.raises(ServerError) as exc_info:
            await broker.handle_callback(CallbackRequest(code="c", state=raw_state))
        assert exc_info.value.redirect_uri == BROWSER_REDIRECT
        assert "leak" not in exc_info.value.description
        assert await store.get(code) is None
        assert len(store) == 0
