"""PKCE (Proof Key for Code Exchange) helpers.

Implements the RFC 7636 S256 transform used to check a token request's
code_verifier against the code_challenge bound to a broker code.
"""

import base64
import hashlib
import hmac
import secrets
import string

from oauth_broker.core.constants import PKCE_METHOD_S256

_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify_pkce(
    code_verifier: str,
    code_challenge: str,
    method: str | None = PKCE_METHOD_S256,
) -> bool:
    """Check a code_verifier against a stored challenge.

    Only S256 is supported; any other method never matches. The comparison
    is constant-time.

    Args:
        code_verifier: Verifier presented at the token endpoint
        code_challenge: Challenge stored with the broker code
        method: Stored challenge method

    Returns:
        True if the verifier's transform equals the challenge
    """
    if method != PKCE_METHOD_S256 or not code_verifier or not code_challenge:
        return False
    try:
        computed = s256_challenge(code_verifier)
    except UnicodeEncodeError:
        # RFC 7636 verifiers are ASCII only
        return False
    return hmac.compare_digest(computed, code_challenge)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a (code_verifier, code_challenge) pair.

    The verifier is 64 characters from the RFC 7636 unreserved alphabet.
    """
    verifier = "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(64))
    return verifier, s256_challenge(verifier)
