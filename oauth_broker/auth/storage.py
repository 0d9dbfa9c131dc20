"""Pydantic models and storage for broker-issued authorization codes.

A broker code binds the client's original request context (client id,
redirect URI, scope, PKCE challenge, resource) to the upstream tokens the
callback later attaches. The store is the only shared mutable state in the
broker: every mutation happens under one lock and readers receive copies.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from oauth_broker.core.constants import TOKEN_TYPE_BEARER
from oauth_broker.core.logging import redact

logger = logging.getLogger(__name__)


class UpstreamTokens(BaseModel):
    """Token set returned by the upstream identity provider."""

    access_token: str
    token_type: str = TOKEN_TYPE_BEARER
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None


class BrokerCode(BaseModel):
    """Authorization code issued by the broker."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    resource: str | None = None
    created_at: float = Field(default_factory=time.time)
    expires_at: float
    tokens: UpstreamTokens | None = None
    # Only set when the upstream exchange is deferred to the token endpoint
    upstream_code: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    @property
    def is_completed(self) -> bool:
        """True once the callback has attached tokens or an upstream code."""
        return self.tokens is not None or self.upstream_code is not None


@runtime_checkable
class AuthorizationCodeStore(Protocol):
    """
    Protocol defining the keyed store with expiry used for broker codes.

    Implementations must make ``take`` atomic: for concurrent callers
    presenting the same code, exactly one receives the record.
    """

    async def put(self, record: BrokerCode) -> None:
        """Store a record; visible to every subsequent ``get``."""
        ...

    async def get(self, code: str) -> BrokerCode | None:
        """Return a copy of the record, deleting and hiding it once expired."""
        ...

    async def attach_tokens(
        self, code: str, tokens: UpstreamTokens
    ) -> BrokerCode | None:
        """Attach upstream tokens once; None if missing, expired or completed."""
        ...

    async def attach_upstream_code(
        self, code: str, upstream_code: str
    ) -> BrokerCode | None:
        """Attach a deferred upstream code once; same contract as attach_tokens."""
        ...

    async def take(self, code: str) -> BrokerCode | None:
        """Atomically remove and return the record (expired records included)."""
        ...

    async def delete(self, code: str) -> bool:
        """Remove a record; idempotent. Returns True if something was removed."""
        ...

    async def sweep(self) -> int:
        """Remove expired records and return how many were removed."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...


class InMemoryAuthorizationCodeStore:
    """Process-local implementation of :class:`AuthorizationCodeStore`.

    Suitable for a single broker process. Records are deep-copied on the way
    in and out so the store stays the sole owner.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: dict[str, BrokerCode] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def put(self, record: BrokerCode) -> None:
        async with self._lock:
            self._records[record.code] = record.model_copy(deep=True)
        logger.debug(
            "Stored broker code %s (expires_at=%.0f)",
            redact(record.code),
            record.expires_at,
        )

    async def get(self, code: str) -> BrokerCode | None:
        async with self._lock:
            record = self._live_record(code)
            return record.model_copy(deep=True) if record else None

    async def attach_tokens(
        self, code: str, tokens: UpstreamTokens
    ) -> BrokerCode | None:
        async with self._lock:
            record = self._live_record(code)
            if record is None or record.is_completed:
                return None
            record.tokens = tokens.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def attach_upstream_code(
        self, code: str, upstream_code: str
    ) -> BrokerCode | None:
        async with self._lock:
            record = self._live_record(code)
            if record is None or record.is_completed:
                return None
            record.upstream_code = upstream_code
            return record.model_copy(deep=True)

    async def take(self, code: str) -> BrokerCode | None:
        async with self._lock:
            return self._records.pop(code, None)

    async def delete(self, code: str) -> bool:
        async with self._lock:
            return self._records.pop(code, None) is not None

    async def sweep(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [c for c, r in self._records.items() if r.is_expired(now)]
            for code in expired:
                del self._records[code]
        if expired:
            logger.debug("Swept %d expired broker codes", len(expired))
        return len(expired)

    async def close(self) -> None:
        async with self._lock:
            self._records.clear()

    def _live_record(self, code: str) -> BrokerCode | None:
        """Return the stored record, evicting it if expired. Caller holds the lock."""
        record = self._records.get(code)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[code]
            logger.debug("Broker code %s expired on lookup", redact(code))
            return None
        return record
