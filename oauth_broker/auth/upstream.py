"""Upstream identity provider client.

Builds the upstream authorization URL and performs the authorization-code
exchange against the provider's token endpoint. The exchange is the only
network call in the broker's request path. It is bounded by a timeout and
never retried.
"""

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from oauth_broker.auth.storage import UpstreamTokens
from oauth_broker.core.constants import (
    GRANT_TYPE_AUTHORIZATION_CODE,
    PKCE_METHOD_S256,
    RESPONSE_TYPE_CODE,
)
from oauth_broker.core.exceptions import ServerError
from oauth_broker.core.logging import redact

logger = logging.getLogger(__name__)


class UpstreamProvider:
    """Client for the single upstream OAuth provider.

    Uses application/x-www-form-urlencoded token requests with client
    credentials in the body (client_secret_post).
    """

    def __init__(
        self,
        *,
        authorization_endpoint: str,
        token_endpoint: str,
        client_id: str | None,
        client_secret: str | None,
        scopes: str,
        timeout: float,
        extra_params: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the upstream client.

        Args:
            authorization_endpoint: Upstream authorization endpoint URL
            token_endpoint: Upstream token endpoint URL
            client_id: Client ID registered upstream
            client_secret: Client secret registered upstream
            scopes: Space-separated scopes requested upstream
            timeout: Token request timeout in seconds
            extra_params: Provider-specific authorization parameters
            http_client: Preconfigured client (tests inject a mock transport)
        """
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.timeout = timeout
        self.extra_params = dict(extra_params or {})
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings, http_client: httpx.AsyncClient | None = None
    ) -> "UpstreamProvider":
        return cls(
            authorization_endpoint=settings.upstream_authorization_endpoint,
            token_endpoint=settings.upstream_token_endpoint,
            client_id=settings.upstream_client_id,
            client_secret=settings.upstream_client_secret,
            scopes=settings.upstream_scopes,
            timeout=settings.upstream_timeout,
            extra_params=settings.get_upstream_extra_params(),
            http_client=http_client,
        )

    def build_authorization_url(
        self,
        *,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
    ) -> str:
        """Build the upstream authorization URL.

        Args:
            redirect_uri: This server's fixed callback URI
            state: Encoded broker state
            code_challenge: S256 challenge for a broker-held verifier

        Returns:
            Absolute upstream authorization URL
        """
        query_params: dict[str, Any] = {
            "client_id": self.client_id or "",
            "redirect_uri": redirect_uri,
            "response_type": RESPONSE_TYPE_CODE,
            "scope": self.scopes,
            **self.extra_params,
            "state": state,
        }
        if code_challenge:
            query_params["code_challenge"] = code_challenge
            query_params["code_challenge_method"] = PKCE_METHOD_S256

        separator = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(query_params)}"

    async def exchange_code(
        self,
        code: str,
        *,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> UpstreamTokens:
        """Exchange an upstream authorization code for tokens.

        Args:
            code: Authorization code issued by the upstream provider
            redirect_uri: Must equal the URI sent in the authorization request
            code_verifier: Verifier for a broker-initiated PKCE challenge

        Returns:
            Tokens returned by the provider

        Raises:
            ServerError: On timeout, transport failure, non-2xx status or an
                unusable response body
        """
        form_data = {
            "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id or "",
            "client_secret": self.client_secret or "",
        }
        if code_verifier:
            form_data["code_verifier"] = code_verifier

        logger.debug(
            "Upstream token request: code=%s, redirect_uri=%s, code_verifier=%s",
            redact(code),
            redirect_uri,
            "present" if code_verifier else "absent",
        )

        try:
            response = await self._http_client.post(
                self.token_endpoint,
                data=form_data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("Upstream token endpoint timed out after %.1fs", self.timeout)
            raise ServerError("Upstream token exchange timed out") from e
        except httpx.HTTPError as e:
            logger.error("Failed to connect to upstream token endpoint: %s", e)
            raise ServerError("Unable to reach the upstream token endpoint") from e

        if response.status_code >= 300:
            # Body stays out of responses and logs
            logger.error(
                "Upstream token exchange failed with status %d", response.status_code
            )
            raise ServerError(
                f"Upstream token exchange failed (status {response.status_code})"
            )

        try:
            tokens = UpstreamTokens.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("Upstream token response could not be parsed: %s", type(e).__name__)
            raise ServerError("Upstream token response was not understood") from e

        logger.info(
            "Upstream token exchange succeeded (id_token=%s, refresh_token=%s)",
            tokens.id_token is not None,
            tokens.refresh_token is not None,
        )
        return tokens

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
