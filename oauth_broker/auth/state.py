"""State codec for the round trip through the upstream provider.

The broker replaces the client's ``state`` with its own opaque blob when it
redirects to the upstream provider. The blob carries the client's original
context and comes back untouched on the callback. It is a signed, expiring
JWT so the callback can trust the redirect URI it contains.
"""

import time
from collections.abc import Callable

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from oauth_broker.core.constants import (
    STATE_FORMAT_VERSION,
    STATE_SIGNING_ALGORITHM,
)
from oauth_broker.core.exceptions import InvalidState


class EncodedState(BaseModel):
    """Client context carried across the upstream round trip."""

    redirect_uri: str
    state: str | None = None
    code_verifier: str | None = None
    broker_code: str | None = None
    resource: str | None = None


class StateCodec:
    """Encode/decode :class:`EncodedState` as a versioned signed token."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int,
        algorithm: str = STATE_SIGNING_ALGORITHM,
        clock: Callable[[], float] = time.time,
    ):
        self.secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self._clock = clock

    def encode(self, payload: EncodedState) -> str:
        now = int(self._clock())
        claims = {
            "v": STATE_FORMAT_VERSION,
            **payload.model_dump(exclude_none=True),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def decode(self, raw: str | None) -> EncodedState:
        """Decode a state blob.

        Raises:
            InvalidState: If the blob is missing, tampered with, expired, of
                another version or format, or lacks required fields
        """
        if not raw:
            raise InvalidState("Missing state parameter")
        try:
            claims = jwt.decode(
                raw,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_aud": False, "verify_exp": False},
            )
        except JWTError as e:
            raise InvalidState("State parameter could not be decoded") from e

        exp = claims.get("exp")
        if not isinstance(exp, int) or self._clock() >= exp:
            raise InvalidState("State parameter has expired")
        if claims.get("v") != STATE_FORMAT_VERSION:
            raise InvalidState("Unsupported state format version")
        try:
            return EncodedState.model_validate(
                {k: v for k, v in claims.items() if k not in ("v", "iat", "exp")}
            )
        except ValidationError as e:
            raise InvalidState("State parameter is missing required fields") from e
