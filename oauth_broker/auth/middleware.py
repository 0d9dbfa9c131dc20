"""
Bearer authentication middleware for the MCP endpoint.

Only the MCP path is protected; discovery, OAuth flow and health endpoints
stay public so clients can obtain a token in the first place.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from oauth_broker.auth.verifier import IdentityVerifier
from oauth_broker.core.constants import HEALTH_PATHS, HTTP_UNAUTHORIZED


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Middleware requiring an upstream-issued bearer token on the MCP endpoint.

    Valid tokens populate ``request.state.identity``; anything else gets a
    401 pointing at the protected resource metadata for OAuth discovery.
    """

    def __init__(
        self,
        app,
        verifier: IdentityVerifier,
        issuer: str,
        protected_path: str = "/mcp",
    ):
        """
        Initialize middleware.

        Args:
            app: ASGI application
            verifier: Resolves bearer tokens to identities
            issuer: This server's origin, used in WWW-Authenticate
            protected_path: Path prefix requiring authentication
        """
        super().__init__(app)
        self.verifier = verifier
        self.issuer = issuer.rstrip("/")
        self.protected_path = protected_path.rstrip("/") or "/"

    def _is_protected(self, path: str) -> bool:
        if path in HEALTH_PATHS:
            return False
        return path == self.protected_path or path.startswith(
            f"{self.protected_path}/"
        )

    async def dispatch(self, request: Request, call_next):
        """Process request with bearer authentication."""
        if request.method == "OPTIONS" or not self._is_protected(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return self._unauthorized_response(
                "Missing or invalid Authorization header"
            )

        identity = await self.verifier.verify(token.strip())
        if identity is None:
            return self._unauthorized_response("Invalid access token")

        request.state.identity = identity
        return await call_next(request)

    def _unauthorized_response(self, message: str) -> JSONResponse:
        """Create 401 Unauthorized response with WWW-Authenticate header."""
        resource_metadata_url = f"{self.issuer}/.well-known/oauth-protected-resource"
        return JSONResponse(
            {"error": "invalid_token", "error_description": message},
            status_code=HTTP_UNAUTHORIZED,
            headers={
                "WWW-Authenticate": f'Bearer resource_metadata="{resource_metadata_url}"'
            },
        )
