"""
Broker route registration.

This module provides a clean interface to register the broker endpoints,
either on a FastMCP server or on a standalone Starlette application, using
the route handlers from oauth_broker.auth.routes.

Architecture:
- Separates route registration (this module) from route handlers (routes.py)
- Creates closure adapters to inject the broker dependency
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.routing import Route

from oauth_broker.auth import routes
from oauth_broker.core.context import broker_lifespan
from oauth_broker.core.logging import logger
from oauth_broker.middleware.setup import setup_middleware

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from oauth_broker.auth.broker import AuthorizationBroker
    from oauth_broker.config import Settings
    from oauth_broker.core.context import BrokerContext


def build_routes(broker: "AuthorizationBroker", settings: "Settings") -> list[Route]:
    """
    Build the broker's routes.

    Routes:
    - /.well-known/oauth-authorization-server (RFC 8414)
    - /.well-known/oauth-protected-resource (RFC 9728)
    - /register (RFC 7591 - Dynamic Client Registration)
    - /authorize
    - callback_path (upstream callback)
    - /token
    - /test-oauth (only when enable_test_flow is set)
    - /health

    Args:
        broker: AuthorizationBroker instance
        settings: Application settings

    Returns:
        List of Starlette routes
    """
    resource_url = f"{settings.issuer}{settings.mcp_path}"

    async def _authorization_server_metadata(request):
        return await routes.authorization_server_metadata(request, broker)

    async def _protected_resource_metadata(request):
        return await routes.protected_resource_metadata(request, broker, resource_url)

    async def _register_client(request):
        return await routes.register_client(request, broker)

    async def _authorize(request):
        return await routes.authorize(request, broker)

    async def _callback(request):
        return await routes.callback(request, broker)

    async def _token_endpoint(request):
        return await routes.token_endpoint(request, broker)

    async def _test_oauth(request):
        return await routes.test_oauth(request, broker)

    route_list = [
        Route(
            "/.well-known/oauth-authorization-server",
            _authorization_server_metadata,
            methods=["GET"],
        ),
        Route(
            "/.well-known/oauth-protected-resource",
            _protected_resource_metadata,
            methods=["GET"],
        ),
        Route("/register", _register_client, methods=["POST"]),
        Route("/authorize", _authorize, methods=["GET"]),
        Route(settings.callback_path, _callback, methods=["GET"]),
        Route("/token", _token_endpoint, methods=["POST"]),
        Route("/health", routes.health, methods=["GET"]),
    ]
    if settings.enable_test_flow:
        route_list.append(Route("/test-oauth", _test_oauth, methods=["GET"]))
    return route_list


def setup_broker_routes(
    mcp: "FastMCP",
    broker: "AuthorizationBroker",
    settings: "Settings",
) -> None:
    """
    Register broker endpoints with a FastMCP server.

    Args:
        mcp: FastMCP server instance
        broker: AuthorizationBroker instance
        settings: Application settings

    Example:
        >>> from fastmcp import FastMCP
        >>> from oauth_broker.core.context import build_broker_context
        >>> from oauth_broker.auth.setup import setup_broker_routes
        >>>
        >>> mcp = FastMCP("My Server")
        >>> context = build_broker_context()
        >>> setup_broker_routes(mcp, context.broker, context.settings)
    """
    route_list = build_routes(broker, settings)
    for route in route_list:
        mcp.custom_route(route.path, methods=sorted(route.methods - {"HEAD"}))(
            route.endpoint
        )

    logger.info("✓ Broker endpoints registered (%d routes)", len(route_list))


def create_app(context: "BrokerContext") -> Starlette:
    """
    Create a standalone Starlette application serving the broker.

    The application's lifespan starts the context's background tasks and
    releases its resources on shutdown.

    Args:
        context: A built broker context

    Returns:
        Starlette application
    """

    @asynccontextmanager
    async def lifespan(_app: Starlette):
        async with broker_lifespan(context):
            yield

    return Starlette(
        routes=build_routes(context.broker, context.settings),
        middleware=setup_middleware(context.settings, context.verifier),
        lifespan=lifespan,
    )
