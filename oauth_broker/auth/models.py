"""Pydantic models for broker requests and responses."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from oauth_broker.core.constants import TOKEN_TYPE_BEARER


def _blank_to_none(params: Mapping[str, Any], names: list[str]) -> dict[str, str | None]:
    values = {}
    for name in names:
        value = params.get(name)
        values[name] = str(value) if value not in (None, "") else None
    return values


class AuthorizationRequest(BaseModel):
    """Inbound /authorize query parameters (never persisted as-is)."""

    response_type: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    resource: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "AuthorizationRequest":
        return cls(**_blank_to_none(params, list(cls.model_fields)))


class CallbackRequest(BaseModel):
    """Upstream provider redirect parameters."""

    code: str | None = None
    error: str | None = None
    error_description: str | None = None
    state: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "CallbackRequest":
        return cls(**_blank_to_none(params, list(cls.model_fields)))


class TokenRequest(BaseModel):
    """Form-encoded /token request body."""

    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    client_id: str | None = None
    code_verifier: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "TokenRequest":
        return cls(**_blank_to_none(params, list(cls.model_fields)))


class TokenResponse(BaseModel):
    """Token endpoint response."""

    access_token: str
    token_type: str = TOKEN_TYPE_BEARER
    expires_in: int
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ClientRegistrationRequest(BaseModel):
    """Dynamic Client Registration request (RFC 7591)."""

    redirect_uris: list[str] = Field(min_length=1)
    client_name: str | None = None
    client_uri: str | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None


class ClientRegistrationResponse(BaseModel):
    """Dynamic Client Registration response."""

    client_id: str
    client_id_issued_at: int
    client_name: str | None = None
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str]
    token_endpoint_auth_method: str = "none"
