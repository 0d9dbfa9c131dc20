"""Application-wide constants for the MCP OAuth broker.

This module contains the protocol literals and default values shared by the
broker components so they are defined in exactly one place.
"""

# ========================================
# OAuth Protocol Literals
# ========================================

RESPONSE_TYPE_CODE = "code"
GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
PKCE_METHOD_S256 = "S256"
TOKEN_TYPE_BEARER = "Bearer"

# ========================================
# Broker Codes & State
# ========================================

BROKER_CODE_BYTES = 32  # secrets.token_urlsafe() entropy for broker codes
AUTH_CODE_TTL_SECONDS_DEFAULT = 600  # 10 minutes
STATE_FORMAT_VERSION = 1
STATE_SIGNING_ALGORITHM = "HS256"
STATE_TTL_SECONDS_DEFAULT = 600

# ========================================
# Upstream Provider
# ========================================

UPSTREAM_TIMEOUT_SECONDS_DEFAULT = 10.0
UPSTREAM_TOKEN_EXPIRES_IN_DEFAULT = 3600  # used when the provider omits expires_in

# ========================================
# Redirect URI Classification
# ========================================

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "[::1]")
LOOPBACK_CANONICAL_HOST = "localhost"
DEFAULT_PORTS = {"http": 80, "https": 443}

# ========================================
# HTTP
# ========================================

HTTP_OK = 200
HTTP_CREATED = 201
HTTP_FOUND = 302
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_SERVER_ERROR = 500

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

# Paths that never require a bearer token
HEALTH_PATHS = ("/health", "/ping", "/healthz")
