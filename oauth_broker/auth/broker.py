"""
OAuth2 authorization-code broker for MCP.

Implements OAuth 2.1 with PKCE in front of a single upstream identity
provider that only accepts pre-registered redirect URIs. The broker issues
its own short-lived codes bound to each client's request, performs the
upstream exchange on the client's behalf, and hands the result back in the
convention the client's redirect URI calls for.
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth_broker.auth.clients import (
    ClientClassifier,
    ClientType,
    DeliveryMode,
    delivery_mode_for,
    origin_of,
    redirect_uris_match,
)
from oauth_broker.auth.models import (
    AuthorizationRequest,
    CallbackRequest,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    TokenRequest,
    TokenResponse,
)
from oauth_broker.auth.pkce import generate_pkce_pair, verify_pkce
from oauth_broker.auth.state import EncodedState, StateCodec
from oauth_broker.auth.storage import AuthorizationCodeStore, BrokerCode, UpstreamTokens
from oauth_broker.auth.upstream import UpstreamProvider
from oauth_broker.core.constants import (
    BROKER_CODE_BYTES,
    GRANT_TYPE_AUTHORIZATION_CODE,
    HTTP_BAD_REQUEST,
    PKCE_METHOD_S256,
    RESPONSE_TYPE_CODE,
    TOKEN_TYPE_BEARER,
    UPSTREAM_TOKEN_EXPIRES_IN_DEFAULT,
)
from oauth_broker.core.exceptions import (
    AuthorizationFailed,
    ConfigurationError,
    InvalidClient,
    InvalidGrant,
    InvalidRedirectUri,
    InvalidRequest,
    InvalidState,
    InvalidTarget,
    OAuthError,
    ServerError,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from oauth_broker.core.logging import redact

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    """Outcome of the upstream callback, shaped for the client type."""

    mode: DeliveryMode
    redirect_url: str | None = None
    payload: dict[str, Any] | None = None


def append_query(url: str, params: dict[str, str | None]) -> str:
    """Add query parameters to a URL, keeping existing ones and dropping the fragment."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


class AuthorizationBroker:
    """
    Authorization-code broker implementing the MCP authorization flow.

    Features:
    - Authorization endpoint minting broker codes (OAuth 2.1 + PKCE S256)
    - Upstream callback translating results per client convention
    - Token endpoint with single-use, TTL-bound code redemption
    - Authorization Server Metadata (RFC 8414)
    - Protected Resource Metadata (RFC 9728)
    - Dynamic Client Registration for public clients (RFC 7591)
    """

    def __init__(
        self,
        *,
        issuer: str,
        callback_uri: str,
        classifier: ClientClassifier,
        store: AuthorizationCodeStore,
        upstream: UpstreamProvider,
        state_codec: StateCodec,
        code_ttl_seconds: int,
        scopes_supported: list[str] | None = None,
        require_pkce: bool = False,
        defer_upstream_exchange: bool = False,
        test_flow_redirect_uri: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the broker.

        Args:
            issuer: This server's origin (e.g., "https://broker.example.com")
            callback_uri: Fixed callback URI registered with the upstream provider
            classifier: Redirect URI classifier
            store: Broker code store
            upstream: Upstream provider client
            state_codec: Codec for the state sent upstream
            code_ttl_seconds: Broker code lifetime
            scopes_supported: Scopes published in metadata
            require_pkce: Reject authorization requests without a challenge
            defer_upstream_exchange: Exchange the upstream code at /token
            test_flow_redirect_uri: Redirect URI recorded by directly-tested flows
            clock: Time source (seconds since epoch)
        """
        self.issuer = issuer.rstrip("/")
        self.callback_uri = callback_uri
        self.classifier = classifier
        self.store = store
        self.upstream = upstream
        self.state_codec = state_codec
        self.code_ttl_seconds = code_ttl_seconds
        self.scopes_supported = scopes_supported or []
        self.require_pkce = require_pkce
        self.defer_upstream_exchange = defer_upstream_exchange
        self.test_flow_redirect_uri = test_flow_redirect_uri
        self._clock = clock

    # ========== Discovery ==========

    def get_authorization_server_metadata(self) -> dict:
        """
        Get OAuth 2.0 Authorization Server Metadata (RFC 8414).

        Returns:
            Authorization server metadata
        """
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "registration_endpoint": f"{self.issuer}/register",
            "response_types_supported": [RESPONSE_TYPE_CODE],
            "grant_types_supported": [GRANT_TYPE_AUTHORIZATION_CODE],
            "code_challenge_methods_supported": [PKCE_METHOD_S256],
            "token_endpoint_auth_methods_supported": ["none"],
            "scopes_supported": self.scopes_supported,
        }

    def get_protected_resource_metadata(self, resource_url: str) -> dict:
        """
        Get Protected Resource Metadata (RFC 9728).

        Args:
            resource_url: MCP server URL

        Returns:
            Protected resource metadata
        """
        return {
            "resource": resource_url,
            "authorization_servers": [self.issuer],
            "scopes_supported": self.scopes_supported,
            "bearer_methods_supported": ["header"],
        }

    # ========== Client Registration ==========

    def register_client(
        self, request: ClientRegistrationRequest
    ) -> ClientRegistrationResponse:
        """
        Register a public client (Dynamic Client Registration - RFC 7591).

        Nothing is persisted: broker codes bind the client id per request.

        Raises:
            InvalidRedirectUri: If any redirect URI is not a supported client shape
        """
        for uri in request.redirect_uris:
            if not self.classifier.is_supported(uri):
                raise InvalidRedirectUri(f"Unsupported redirect URI: {uri}")

        client_id = f"mcp_{secrets.token_urlsafe(16)}"
        logger.info(
            "Registered public client %s (%s)",
            client_id,
            request.client_name or "unnamed",
        )
        return ClientRegistrationResponse(
            client_id=client_id,
            client_id_issued_at=int(self._clock()),
            client_name=request.client_name,
            redirect_uris=request.redirect_uris,
            grant_types=[GRANT_TYPE_AUTHORIZATION_CODE],
            response_types=[RESPONSE_TYPE_CODE],
        )

    # ========== Authorization Endpoint ==========

    async def authorize(self, request: AuthorizationRequest) -> str:
        """
        Validate an authorization request and mint a broker code.

        Args:
            request: Inbound authorization request

        Returns:
            Upstream authorization URL to redirect the user agent to

        Raises:
            OAuthError: On validation failure. ``redirect_uri`` is set on the
                error when the client's redirect URI is usable.
        """
        client_type = self.classifier.classify(request.redirect_uri)
        deliver_to = (
            request.redirect_uri if client_type is not ClientType.UNSUPPORTED else None
        )

        def reject(error_cls: type[OAuthError], description: str) -> OAuthError:
            return error_cls(
                description,
                redirect_uri=deliver_to,
                state=request.state,
                status_code=HTTP_BAD_REQUEST,
            )

        if request.response_type != RESPONSE_TYPE_CODE:
            raise reject(
                UnsupportedResponseType, "Only response_type=code is supported"
            )
        if not request.client_id or not request.redirect_uri:
            raise reject(InvalidRequest, "client_id and redirect_uri are required")
        if request.code_challenge and request.code_challenge_method != PKCE_METHOD_S256:
            raise reject(
                InvalidRequest, "Only S256 code challenge method is supported"
            )
        if self.require_pkce and not request.code_challenge:
            raise reject(InvalidRequest, "code_challenge is required")
        if request.resource and origin_of(request.resource) != origin_of(self.issuer):
            raise reject(
                InvalidTarget, "Resource indicator does not match this server"
            )
        if client_type is ClientType.UNSUPPORTED:
            raise reject(InvalidRequest, "redirect_uri is not allowed")

        now = self._clock()
        record = BrokerCode(
            code=secrets.token_urlsafe(BROKER_CODE_BYTES),
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            code_challenge=request.code_challenge,
            code_challenge_method=(
                request.code_challenge_method if request.code_challenge else None
            ),
            resource=request.resource,
            created_at=now,
            expires_at=now + self.code_ttl_seconds,
        )
        await self.store.put(record)

        state = self.state_codec.encode(
            EncodedState(
                redirect_uri=request.redirect_uri,
                state=request.state,
                broker_code=record.code,
                resource=request.resource,
            )
        )
        logger.info(
            "Issued broker code %s for client %s (%s)",
            redact(record.code),
            request.client_id,
            client_type.value,
        )
        return self.upstream.build_authorization_url(
            redirect_uri=self.callback_uri, state=state
        )

    async def start_direct_flow(self) -> str:
        """
        Start a directly-tested flow that ends with tokens at the callback.

        The broker holds the PKCE verifier itself and carries it in the state;
        no broker code is issued.

        Returns:
            Upstream authorization URL

        Raises:
            ConfigurationError: If the test redirect URI does not classify as a
                token-payload client
        """
        redirect_uri = self.test_flow_redirect_uri
        client_type = self.classifier.classify(redirect_uri)
        if (
            client_type is ClientType.UNSUPPORTED
            or delivery_mode_for(client_type) is not DeliveryMode.TOKEN_PAYLOAD
        ):
            raise ConfigurationError(
                "test_flow_redirect_uri must be one of loopback_fixed_redirect_uris"
            )

        code_verifier, code_challenge = generate_pkce_pair()
        state = self.state_codec.encode(
            EncodedState(
                redirect_uri=redirect_uri,
                state=secrets.token_urlsafe(16),
                code_verifier=code_verifier,
            )
        )
        logger.info("Started directly-tested flow")
        return self.upstream.build_authorization_url(
            redirect_uri=self.callback_uri,
            state=state,
            code_challenge=code_challenge,
        )

    # ========== Upstream Callback ==========

    async def handle_callback(self, request: CallbackRequest) -> CallbackResult:
        """
        Complete the upstream leg and translate the result for the client.

        Args:
            request: Parameters of the upstream provider's redirect

        Returns:
            A code-forwarding redirect whenever the state references a broker
            code, otherwise a direct token payload

        Raises:
            OAuthError: On failure; ``redirect_uri`` is set when the error can
                be delivered to a code-forwarding client
        """
        if request.error:
            logger.warning("Upstream provider returned error: %s", request.error)
            raise await self._callback_failure(
                AuthorizationFailed(
                    f"Upstream authorization failed: {request.error}"
                ),
                request.state,
            )
        if not request.code:
            raise await self._callback_failure(
                InvalidRequest("No authorization code received"), request.state
            )

        decoded = self.state_codec.decode(request.state)
        client_type = self.classifier.classify(decoded.redirect_uri)
        if client_type is ClientType.UNSUPPORTED:
            await self._discard(decoded.broker_code)
            raise InvalidClient(
                "Redirect URI is not a supported client", status_code=HTTP_BAD_REQUEST
            )

        # A broker code is always redeemed at /token, whatever the client type
        mode = (
            DeliveryMode.FORWARD_CODE
            if decoded.broker_code
            else delivery_mode_for(client_type)
        )
        deliver_to = decoded.redirect_uri if mode is DeliveryMode.FORWARD_CODE else None
        if mode is DeliveryMode.FORWARD_CODE and not decoded.broker_code:
            raise InvalidState(
                "State carries no broker code",
                redirect_uri=deliver_to,
                state=decoded.state,
            )

        logger.info(
            "Callback for %s client (broker code %s)",
            client_type.value,
            redact(decoded.broker_code),
        )

        if mode is DeliveryMode.FORWARD_CODE and self.defer_upstream_exchange:
            record = await self.store.attach_upstream_code(
                decoded.broker_code, request.code
            )
            if record is None:
                await self._discard(decoded.broker_code)
                raise InvalidGrant(
                    "Authorization code expired or already completed",
                    redirect_uri=deliver_to,
                    state=decoded.state,
                )
            return self._forward_code(decoded, record.code)

        try:
            tokens = await self.upstream.exchange_code(
                request.code,
                redirect_uri=self.callback_uri,
                code_verifier=decoded.code_verifier,
            )
        except ServerError as e:
            await self._discard(decoded.broker_code)
            e.redirect_uri = deliver_to
            e.state = decoded.state
            raise

        if mode is DeliveryMode.FORWARD_CODE:
            record = await self.store.attach_tokens(decoded.broker_code, tokens)
            if record is None:
                await self._discard(decoded.broker_code)
                raise InvalidGrant(
                    "Authorization code expired or already completed",
                    redirect_uri=deliver_to,
                    state=decoded.state,
                )
            return self._forward_code(decoded, record.code)

        payload = self._token_response(tokens, None).to_dict()
        if decoded.state is not None:
            payload["state"] = decoded.state
        return CallbackResult(mode=DeliveryMode.TOKEN_PAYLOAD, payload=payload)

    def _forward_code(self, decoded: EncodedState, code: str) -> CallbackResult:
        return CallbackResult(
            mode=DeliveryMode.FORWARD_CODE,
            redirect_url=append_query(
                decoded.redirect_uri, {"code": code, "state": decoded.state}
            ),
        )

    async def _callback_failure(
        self, error: OAuthError, raw_state: str | None
    ) -> OAuthError:
        """Attach a redirect target to a callback error when one is trustworthy."""
        if not raw_state:
            return error
        try:
            decoded = self.state_codec.decode(raw_state)
        except InvalidState:
            return error
        await self._discard(decoded.broker_code)
        client_type = self.classifier.classify(decoded.redirect_uri)
        if client_type is not ClientType.UNSUPPORTED and (
            decoded.broker_code
            or delivery_mode_for(client_type) is DeliveryMode.FORWARD_CODE
        ):
            error.redirect_uri = decoded.redirect_uri
            error.state = decoded.state
        return error

    async def _discard(self, broker_code: str | None) -> None:
        if broker_code and await self.store.delete(broker_code):
            logger.info("Discarded broker code %s after failure", redact(broker_code))

    # ========== Token Endpoint ==========

    async def exchange_token(self, request: TokenRequest) -> TokenResponse:
        """
        Redeem a broker code for tokens.

        Checks run in a fixed order and the first failure is reported. The
        code is removed from the store before any check past existence, so it
        can be redeemed at most once whatever the outcome.

        Args:
            request: Token request form fields

        Returns:
            Token response

        Raises:
            OAuthError: On validation or upstream failure
        """
        if request.grant_type != GRANT_TYPE_AUTHORIZATION_CODE:
            raise UnsupportedGrantType("Only authorization_code grant is supported")
        if not request.code or not request.redirect_uri:
            raise InvalidRequest("code and redirect_uri are required")

        record = await self.store.take(request.code)
        if record is None:
            logger.warning("Unknown or used broker code %s", redact(request.code))
            raise InvalidGrant("Invalid authorization code")
        if record.is_expired(self._clock()):
            logger.warning("Expired broker code %s", redact(request.code))
            raise InvalidGrant("Authorization code expired")
        if not redirect_uris_match(request.redirect_uri, record.redirect_uri):
            raise InvalidGrant("Redirect URI mismatch")
        if request.client_id and request.client_id != record.client_id:
            raise InvalidClient("Client ID mismatch")
        if record.code_challenge and not request.code_verifier:
            raise InvalidRequest("code_verifier is required")
        if record.code_challenge and not verify_pkce(
            request.code_verifier,
            record.code_challenge,
            record.code_challenge_method,
        ):
            raise InvalidGrant("Invalid code verifier")

        tokens = record.tokens
        if tokens is None and record.upstream_code:
            tokens = await self.upstream.exchange_code(
                record.upstream_code, redirect_uri=self.callback_uri
            )
        if tokens is None:
            raise InvalidGrant("Authorization has not completed upstream")

        logger.info(
            "Redeemed broker code %s for client %s",
            redact(record.code),
            record.client_id,
        )
        return self._token_response(tokens, record.scope)

    def _token_response(
        self, tokens: UpstreamTokens, fallback_scope: str | None
    ) -> TokenResponse:
        return TokenResponse(
            access_token=tokens.access_token,
            token_type=TOKEN_TYPE_BEARER,
            expires_in=tokens.expires_in or UPSTREAM_TOKEN_EXPIRES_IN_DEFAULT,
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
            scope=tokens.scope or fallback_scope,
        )
