"""Tests for PKCE S256 verification."""

from oauth_broker.auth.pkce import generate_pkce_pair, s256_challenge, verify_pkce

# RFC 7636 Appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestS256:
    def test_matches_rfc_vector(self):
        assert s256_challenge(RFC_VERIFIER) == RFC_CHALLENGE

    def test_challenge_has_no_padding(self):
        assert "=" not in s256_challenge("a" * 43)


class TestVerifyPkce:
    def test_valid_verifier(self):
        assert verify_pkce(RFC_VERIFIER, RFC_CHALLENGE, "S256") is True

    def test_wrong_verifier(self):
        assert verify_pkce("x" * 43, RFC_CHALLENGE, "S256") is False

    def test_plain_method_never_matches(self):
        """Even a verifier equal to the challenge fails for 'plain'."""
        assert verify_pkce(RFC_CHALLENGE, RFC_CHALLENGE, "plain") is False

    def test_missing_method_never_matches(self):
        assert verify_pkce(RFC_VERIFIER, RFC_CHALLENGE, None) is False

    def test_empty_verifier(self):
        assert verify_pkce("", RFC_CHALLENGE, "S256") is False

    def test_non_ascii_verifier(self):
        assert verify_pkce("vérifier" * 6, RFC_CHALLENGE, "S256") is False


class TestGeneratePair:
    def test_pair_verifies(self):
        verifier, challenge = generate_pkce_pair()
        assert 43 <= len(verifier) <= 128
        assert verify_pkce(verifier, challenge, "S256")

    def test_pairs_are_unique(self):
        assert generate_pkce_pair()[0] != generate_pkce_pair()[0]
