"""HTTP middleware configuration for the MCP OAuth broker."""

from .setup import setup_middleware

__all__ = ["setup_middleware"]
