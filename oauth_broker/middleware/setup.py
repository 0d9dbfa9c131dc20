"""
Middleware configuration for the broker's HTTP application.

Builds the Starlette middleware stack shared by the standalone app and the
FastMCP host:
- CORSMiddleware (outermost, so preflights and 401s carry CORS headers)
- BearerAuthMiddleware (protects the MCP endpoint)
"""

from typing import TYPE_CHECKING

from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from oauth_broker.core.logging import logger

if TYPE_CHECKING:
    from oauth_broker.auth.verifier import IdentityVerifier
    from oauth_broker.config import Settings


def setup_middleware(
    settings: "Settings",
    verifier: "IdentityVerifier | None" = None,
) -> list[Middleware]:
    """
    Configure middleware based on settings.

    Args:
        settings: Application settings
        verifier: Identity verifier; bearer authentication is disabled without one

    Returns:
        List of configured Middleware instances

    Example:
        >>> from oauth_broker.config import get_settings
        >>> from oauth_broker.middleware.setup import setup_middleware
        >>>
        >>> middleware = setup_middleware(get_settings(), verifier)
    """
    middleware = []

    origins = settings.get_cors_allow_origins_list()
    if origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=origins,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id"],
                expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
            )
        )
        logger.info("✓ CORS enabled for %s", ", ".join(origins))

    if verifier is not None:
        from oauth_broker.auth.middleware import BearerAuthMiddleware

        middleware.append(
            Middleware(
                BearerAuthMiddleware,
                verifier=verifier,
                issuer=settings.issuer,
                protected_path=settings.mcp_path,
            )
        )
        logger.info("✓ Bearer authentication enabled on %s", settings.mcp_path)
    else:
        logger.warning("⚠ No bearer authentication configured for %s", settings.mcp_path)

    return middleware
