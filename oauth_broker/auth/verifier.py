"""Bearer token verification for the protected MCP endpoint.

The broker hands clients the upstream provider's own access tokens, so a
token is verified by asking the provider who it belongs to.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict

from oauth_broker.core.constants import HTTP_OK
from oauth_broker.core.logging import redact

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """Caller identity resolved from a bearer token."""

    model_config = ConfigDict(extra="allow")

    subject: str
    email: str | None = None
    name: str | None = None


@runtime_checkable
class IdentityVerifier(Protocol):
    """Protocol for resolving a bearer token to an identity."""

    async def verify(self, token: str) -> Identity | None:
        """Return the identity for a valid token, or None."""
        ...

    async def aclose(self) -> None:
        """Release resources held by the verifier."""
        ...


class UserInfoVerifier:
    """Verifies tokens against the upstream provider's userinfo endpoint."""

    def __init__(
        self,
        userinfo_endpoint: str,
        *,
        timeout: float,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.userinfo_endpoint = userinfo_endpoint
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings, http_client: httpx.AsyncClient | None = None
    ) -> "UserInfoVerifier":
        return cls(
            settings.upstream_userinfo_endpoint,
            timeout=settings.upstream_timeout,
            http_client=http_client,
        )

    async def verify(self, token: str) -> Identity | None:
        try:
            response = await self._http_client.get(
                self.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error("Userinfo request failed: %s", type(e).__name__)
            return None

        if response.status_code != HTTP_OK:
            logger.info(
                "Bearer token %s rejected by upstream (status %d)",
                redact(token),
                response.status_code,
            )
            return None

        try:
            info = response.json()
        except ValueError:
            logger.error("Userinfo response was not JSON")
            return None

        subject = info.get("sub") or info.get("id")
        if not subject:
            return None
        return Identity(
            subject=str(subject),
            email=info.get("email"),
            name=info.get("name"),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
