"""Client classification and redirect URI normalization.

The broker serves clients that expect different delivery conventions. The
convention is chosen from the shape of the client's redirect URI using an
explicit table of exact URIs and loopback patterns; anything else is
``unsupported`` and rejected.
"""

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

from oauth_broker.core.constants import (
    DEFAULT_PORTS,
    LOOPBACK_CANONICAL_HOST,
    LOOPBACK_HOSTS,
)


class ClientType(str, Enum):
    """Calling convention inferred from a redirect URI."""

    LOOPBACK_FIXED_PORT = "loopback-fixed-port"
    LOOPBACK_DYNAMIC_PORT = "loopback-dynamic-port"
    BROWSER_REDIRECT = "browser-redirect"
    UNSUPPORTED = "unsupported"


class DeliveryMode(str, Enum):
    """How the callback hands the result back to a client."""

    FORWARD_CODE = "forward_code"
    TOKEN_PAYLOAD = "token_payload"


# Applies to flows without a broker code; broker codes are always forwarded
DELIVERY_MODES: dict[ClientType, DeliveryMode] = {
    ClientType.LOOPBACK_DYNAMIC_PORT: DeliveryMode.FORWARD_CODE,
    ClientType.BROWSER_REDIRECT: DeliveryMode.FORWARD_CODE,
    ClientType.LOOPBACK_FIXED_PORT: DeliveryMode.TOKEN_PAYLOAD,
}


@dataclass(frozen=True)
class RedirectPattern:
    """A named redirect URI shape mapped to a client type."""

    name: str
    client_type: ClientType
    pattern: re.Pattern[str]

    def matches(self, redirect_uri: str) -> bool:
        return self.pattern.fullmatch(redirect_uri) is not None


_LOOPBACK_HOST_RE = "|".join(re.escape(host) for host in LOOPBACK_HOSTS)


def build_loopback_patterns(callback_paths: list[str]) -> list[RedirectPattern]:
    """Build the loopback pattern table.

    Args:
        callback_paths: Fixed paths accepted after ``http://<loopback>:<port>``

    Returns:
        Patterns for "any port, no path" and "any port, fixed callback path"
    """
    patterns = [
        RedirectPattern(
            name="loopback host, any port, no path",
            client_type=ClientType.LOOPBACK_DYNAMIC_PORT,
            pattern=re.compile(rf"http://(?:{_LOOPBACK_HOST_RE}):\d{{1,5}}/?"),
        ),
    ]
    paths = [p.rstrip("/") for p in callback_paths if p.strip("/")]
    if paths:
        path_re = "|".join(re.escape(p if p.startswith("/") else f"/{p}") for p in paths)
        patterns.append(
            RedirectPattern(
                name="loopback host, any port, fixed callback path",
                client_type=ClientType.LOOPBACK_DYNAMIC_PORT,
                pattern=re.compile(
                    rf"http://(?:{_LOOPBACK_HOST_RE}):\d{{1,5}}(?:{path_re})/?"
                ),
            )
        )
    return patterns


class ClientClassifier:
    """Deterministic redirect URI -> ClientType mapping.

    Evaluation order: exact loopback URIs, exact browser URIs, then the
    loopback patterns. Unmatched URIs are ``UNSUPPORTED``.
    """

    def __init__(
        self,
        loopback_fixed_uris: list[str],
        browser_redirect_uris: list[str],
        patterns: list[RedirectPattern],
    ):
        self.loopback_fixed_uris = frozenset(loopback_fixed_uris)
        self.browser_redirect_uris = frozenset(browser_redirect_uris)
        self.patterns = tuple(patterns)

    @classmethod
    def from_settings(cls, settings) -> "ClientClassifier":
        return cls(
            loopback_fixed_uris=settings.get_loopback_fixed_redirect_uris_list(),
            browser_redirect_uris=settings.get_browser_redirect_uris_list(),
            patterns=build_loopback_patterns(
                settings.get_loopback_callback_paths_list()
            ),
        )

    def classify(self, redirect_uri: str | None) -> ClientType:
        if not redirect_uri:
            return ClientType.UNSUPPORTED
        if redirect_uri in self.loopback_fixed_uris:
            return ClientType.LOOPBACK_FIXED_PORT
        if redirect_uri in self.browser_redirect_uris:
            return ClientType.BROWSER_REDIRECT
        for pattern in self.patterns:
            if pattern.matches(redirect_uri) and _valid_port(redirect_uri):
                return pattern.client_type
        return ClientType.UNSUPPORTED

    def is_supported(self, redirect_uri: str | None) -> bool:
        return self.classify(redirect_uri) is not ClientType.UNSUPPORTED


def delivery_mode_for(client_type: ClientType) -> DeliveryMode:
    """Delivery convention for a supported client type."""
    return DELIVERY_MODES[client_type]


def _valid_port(uri: str) -> bool:
    try:
        port = urlsplit(uri).port
    except ValueError:
        return False
    return port is not None and port > 0


def _canonical_netloc(scheme: str, hostname: str, port: int | None) -> str:
    host = hostname.lower()
    if host in ("127.0.0.1", "::1", LOOPBACK_CANONICAL_HOST):
        host = LOOPBACK_CANONICAL_HOST
    elif ":" in host:
        host = f"[{host}]"
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return host
    return f"{host}:{port}"


def normalize_redirect_uri(uri: str) -> str:
    """Normalize a redirect URI for equality checks.

    Lowercases scheme and host, collapses loopback aliases to ``localhost``,
    drops default ports and strips a trailing slash from the path. Case
    normalization covers only the scheme and host: the path and query stay
    case-sensitive, as RFC 3986 section 6.2.2.1 treats them, so
    ``/Callback`` and ``/callback`` are different redirect URIs. Unparseable
    input is returned unchanged.
    """
    try:
        parts = urlsplit(uri.strip())
        port = parts.port
    except ValueError:
        return uri
    if not parts.scheme or not parts.hostname:
        return uri
    scheme = parts.scheme.lower()
    netloc = _canonical_netloc(scheme, parts.hostname, port)
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def redirect_uris_match(presented: str, stored: str) -> bool:
    return normalize_redirect_uri(presented) == normalize_redirect_uri(stored)


def origin_of(uri: str) -> str | None:
    """scheme://host[:port] of a URI with default ports dropped, or None."""
    try:
        parts = urlsplit(uri.strip())
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    scheme = parts.scheme.lower()
    return f"{scheme}://{_canonical_netloc(scheme, parts.hostname, port)}"
