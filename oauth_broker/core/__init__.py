"""Core functionality for the MCP OAuth broker."""

from .decorators import track_request
from .exceptions import BrokerError, ConfigurationError, OAuthError
from .logging import configure_logging, logger, redact

__all__ = [
    "BrokerError",
    "ConfigurationError",
    "OAuthError",
    "configure_logging",
    "logger",
    "redact",
    "track_request",
]
