"""Logging for the MCP OAuth broker.

Everything goes to stderr with the current request id prefixed. Two loggers
matter: the application logger ``mcp-oauth-broker`` and the package logger
``oauth_broker`` that module-level ``logging.getLogger(__name__)`` loggers
inherit from. ``MCP_DEBUG`` lowers both to DEBUG.
"""

import logging
import os
import sys
from contextvars import ContextVar

APP_LOGGER_NAME = "mcp-oauth-broker"
PACKAGE_LOGGER_NAME = "oauth_broker"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(request_id)s%(message)s"

# Set by track_request for the duration of a request
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` ("[id] " or "") to every record."""

    def filter(self, record):
        request_id = request_id_ctx.get()
        record.request_id = f"[{request_id}] " if request_id else ""
        return True


def redact(value: str | None, visible: int = 6) -> str:
    """Mask a secret (code, token, verifier) for log output."""
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."


def debug_enabled() -> bool:
    return os.getenv("MCP_DEBUG", "").lower() in ("true", "1", "yes")


def configure_logging(debug: bool | None = None) -> logging.Logger:
    """
    Configure stderr logging and return the application logger.

    Args:
        debug: Force debug output on or off; ``None`` reads ``MCP_DEBUG``

    Returns:
        The ``mcp-oauth-broker`` logger
    """
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    request_filter = RequestIdFilter()
    for handler in logging.root.handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(request_filter)

    if debug is None:
        debug = debug_enabled()
    level = logging.DEBUG if debug else logging.INFO

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    for name in (APP_LOGGER_NAME, PACKAGE_LOGGER_NAME):
        logging.getLogger(name).setLevel(level)
    if debug:
        app_logger.debug("Debug mode enabled")
    return app_logger


logger = configure_logging()
