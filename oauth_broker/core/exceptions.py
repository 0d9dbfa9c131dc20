"""Custom exceptions for the MCP OAuth broker."""

from typing import Any

from .constants import HTTP_BAD_REQUEST, HTTP_SERVER_ERROR, HTTP_UNAUTHORIZED


# ========================================
# Base Exceptions
# ========================================


class BrokerError(Exception):
    """Base exception for all OAuth broker errors."""


class ConfigurationError(BrokerError):
    """Configuration validation failed."""


# ========================================
# OAuth Protocol Exceptions
# ========================================


class OAuthError(BrokerError):
    """Error reported to an OAuth client as ``{error, error_description}``.

    When ``redirect_uri`` is set the error is delivered by redirecting the
    user agent back to the client; otherwise it is returned as a JSON body.
    """

    error: str = "server_error"
    status_code: int = HTTP_BAD_REQUEST

    def __init__(
        self,
        description: str,
        *,
        redirect_uri: str | None = None,
        state: str | None = None,
        status_code: int | None = None,
    ):
        self.description = description
        self.redirect_uri = redirect_uri
        self.state = state
        if status_code is not None:
            self.status_code = status_code
        super().__init__(description)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "error_description": self.description}


class InvalidRequest(OAuthError):
    """Malformed or missing request parameters."""

    error = "invalid_request"


class UnsupportedResponseType(OAuthError):
    """response_type other than ``code``."""

    error = "unsupported_response_type"


class UnsupportedGrantType(OAuthError):
    """grant_type other than ``authorization_code``."""

    error = "unsupported_grant_type"


class InvalidClient(OAuthError):
    """Client identity or redirect URI not recognized."""

    error = "invalid_client"
    status_code = HTTP_UNAUTHORIZED


class InvalidGrant(OAuthError):
    """Broker code invalid, expired, already used, or PKCE mismatch."""

    error = "invalid_grant"


class InvalidTarget(OAuthError):
    """Resource indicator outside this server's origin (RFC 8707)."""

    error = "invalid_target"


class InvalidState(OAuthError):
    """State blob could not be decoded."""

    error = "invalid_request"


class InvalidRedirectUri(OAuthError):
    """Client registration with an unsupported redirect URI (RFC 7591)."""

    error = "invalid_redirect_uri"


class AuthorizationFailed(OAuthError):
    """The upstream provider denied authorization."""

    error = "access_denied"


class ServerError(OAuthError):
    """Upstream provider or store failure."""

    error = "server_error"
    status_code = HTTP_SERVER_ERROR
