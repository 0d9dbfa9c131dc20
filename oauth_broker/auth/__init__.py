"""OAuth 2.1 authorization-code broker components.

The broker sits between MCP clients and a single upstream identity provider,
translating between the clients' redirect conventions and the provider's
single registered callback.
"""

from oauth_broker.auth.broker import AuthorizationBroker, CallbackResult
from oauth_broker.auth.clients import ClientClassifier, ClientType, DeliveryMode
from oauth_broker.auth.middleware import BearerAuthMiddleware
from oauth_broker.auth.storage import (
    AuthorizationCodeStore,
    BrokerCode,
    InMemoryAuthorizationCodeStore,
    UpstreamTokens,
)
from oauth_broker.auth.verifier import IdentityVerifier, UserInfoVerifier

__all__ = [
    "AuthorizationBroker",
    "AuthorizationCodeStore",
    "BearerAuthMiddleware",
    "BrokerCode",
    "CallbackResult",
    "ClientClassifier",
    "ClientType",
    "DeliveryMode",
    "IdentityVerifier",
    "InMemoryAuthorizationCodeStore",
    "UpstreamTokens",
    "UserInfoVerifier",
]
