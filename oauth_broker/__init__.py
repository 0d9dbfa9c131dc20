"""OAuth 2.1 authorization-code broker for MCP servers."""

__version__ = "0.1.0"
