"""
Main entry point for the MCP OAuth broker.

Hosts the broker endpoints next to a bearer-protected MCP endpoint on a
single FastMCP streamable-HTTP server.
"""

import asyncio
import sys
import traceback

from fastmcp import FastMCP

from oauth_broker.auth.setup import setup_broker_routes
from oauth_broker.config import get_settings
from oauth_broker.core import logger
from oauth_broker.core.context import (
    build_broker_context,
    cleanup_broker_context,
    start_broker_context,
)
from oauth_broker.middleware.setup import setup_middleware

# Get settings instance
settings = get_settings()

try:
    logger.info("Initializing FastMCP server...")
    logger.info(f"Host: {settings.host}, Port: {settings.port}")
    mcp = FastMCP("MCP OAuth Broker")
    context = build_broker_context(settings)
    setup_broker_routes(mcp, context.broker, settings)
except Exception as e:
    logger.error(f"Failed to initialize FastMCP server: {e}")
    logger.error(f"Traceback: {traceback.format_exc()}")
    sys.exit(1)


async def main() -> None:
    """
    Main async function to run the broker.
    """
    try:
        logger.info("Main function started")
        await start_broker_context(context)

        logger.info("Issuer: %s", settings.issuer)
        logger.info("Upstream callback: %s", settings.callback_uri)
        if settings.enable_test_flow:
            logger.warning("⚠ Directly-tested flow enabled at /test-oauth")

        # Flush output before starting server
        sys.stdout.flush()
        sys.stderr.flush()

        logger.info(
            "Setting up streamable-http server on %s:%s...",
            settings.host,
            settings.port,
        )
        await mcp.run_async(
            transport="streamable-http",
            host=settings.host,
            port=settings.port,
            path=settings.mcp_path,
            middleware=setup_middleware(settings, context.verifier),
        )

    except Exception as e:
        logger.error(f"Error in main function: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        raise
    finally:
        logger.info("Shutting down - cleaning up broker context...")
        await cleanup_broker_context(context)


def run() -> None:
    """Console script entry point."""
    try:
        logger.info("Starting main function...")
        asyncio.run(main())
    except Exception as e:
        logger.error(f"Error in main: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        sys.exit(1)


if __name__ == "__main__":
    run()
