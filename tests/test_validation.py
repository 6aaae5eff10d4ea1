"""Tests for ID token verification."""

import time

import jwt
import pytest
from conftest import CLIENT_ID, ISSUER, KEY_ID, mint_id_token, public_jwk, sign_compact

from eidflow.core.errors import TokenVerificationError, UnknownKeyError
from eidflow.core.oidc.keys import parse_key_set
from eidflow.core.oidc.validation import NOT_BEFORE_LEEWAY_SECONDS, TokenVerifier, VerificationFailure


@pytest.fixture
def verifier(signing_key) -> TokenVerifier:
    keys = parse_key_set({"keys": [public_jwk(signing_key)]})
    return TokenVerifier.for_keys(ISSUER, keys, audience=CLIENT_ID)


def _reason(verifier: TokenVerifier, token: str) -> VerificationFailure:
    with pytest.raises(TokenVerificationError) as exc_info:
        verifier.verify(token)
    return exc_info.value.reason


class TestTokenVerifier:
    """Tests for TokenVerifier."""

    def test_valid_token(self, verifier, signing_key) -> None:
        """A correctly signed, current token yields its claims."""
        token = mint_id_token(signing_key, name="Jens Jensen")
        claims = verifier.verify(token)

        assert claims.subject == "{2f4a8b6e-5c1d-4e3f-9a7b-0c2d1e3f4a5b}"
        assert claims.identity_scheme == "urn:grn:authn:mock"
        assert claims.display_name == "Jens Jensen"
        assert claims.raw_token == token
        assert claims.claims["iss"] == ISSUER

    def test_identity_scheme_fallbacks(self, verifier, signing_key) -> None:
        """The scheme falls back to acr, then identityscheme."""
        from_acr = mint_id_token(signing_key, authenticationtype=None, acr="urn:grn:authn:se:bankid")
        from_identityscheme = mint_id_token(signing_key, authenticationtype=None, identityscheme="nobankid")
        neither = mint_id_token(signing_key, authenticationtype=None)

        assert verifier.verify(from_acr).identity_scheme == "urn:grn:authn:se:bankid"
        assert verifier.verify(from_identityscheme).identity_scheme == "nobankid"
        assert verifier.verify(neither).identity_scheme is None

    def test_malformed_token(self, verifier) -> None:
        """Garbage is rejected before any key lookup."""
        assert _reason(verifier, "not-a-jwt") == VerificationFailure.MALFORMED

    def test_non_string_kid_is_malformed(self, verifier, signing_key) -> None:
        """A kid that is not a string is a structural failure."""
        claims = jwt.decode(mint_id_token(signing_key), options={"verify_signature": False})
        token = sign_compact(signing_key, {"alg": "RS256", "typ": "JWT", "kid": 123}, claims)
        assert _reason(verifier, token) == VerificationFailure.MALFORMED

    def test_unknown_kid(self, verifier, other_key) -> None:
        """A kid outside the key set raises UnknownKeyError."""
        with pytest.raises(UnknownKeyError) as exc_info:
            verifier.verify(mint_id_token(other_key, kid="unknown"))
        assert exc_info.value.key_id == "unknown"
        assert str(exc_info.value) == "Unknown key unknown"

    def test_missing_kid(self, verifier, signing_key) -> None:
        """A token without a kid cannot be matched to a key."""
        with pytest.raises(UnknownKeyError):
            verifier.verify(mint_id_token(signing_key, kid=None))

    def test_wrong_signature(self, verifier, other_key) -> None:
        """A token signed by another key under a known kid fails the signature check."""
        assert _reason(verifier, mint_id_token(other_key)) == VerificationFailure.SIGNATURE

    def test_tampered_payload(self, verifier, signing_key) -> None:
        """Changing the payload after signing breaks the signature."""
        header, _, signature = mint_id_token(signing_key).split(".")
        _, forged_payload, _ = mint_id_token(signing_key, sub="someone-else").split(".")
        assert _reason(verifier, f"{header}.{forged_payload}.{signature}") == VerificationFailure.SIGNATURE

    def test_symmetric_algorithm_refused(self, verifier) -> None:
        """An HS256 token under the RSA key id is refused outright."""
        token = jwt.encode({"iss": ISSUER, "sub": "x"}, "shared-secret-that-is-long-enough-for-hs256", algorithm="HS256", headers={"kid": KEY_ID})
        assert _reason(verifier, token) == VerificationFailure.ALGORITHM

    def test_wrong_issuer(self, verifier, signing_key) -> None:
        """The issuer must match exactly, trailing slash included."""
        assert _reason(verifier, mint_id_token(signing_key, iss="https://evil.example.com")) == VerificationFailure.ISSUER
        assert _reason(verifier, mint_id_token(signing_key, iss=ISSUER + "/")) == VerificationFailure.ISSUER

    def test_expired(self, verifier, signing_key) -> None:
        """Expired tokens are rejected without leeway."""
        token = mint_id_token(signing_key, exp=int(time.time()) - 2)
        assert _reason(verifier, token) == VerificationFailure.EXPIRED

    def test_not_before_within_leeway(self, verifier, signing_key) -> None:
        """A token valid a moment in the future passes within the leeway."""
        token = mint_id_token(signing_key, nbf=int(time.time()) + NOT_BEFORE_LEEWAY_SECONDS - 2)
        assert verifier.verify(token).subject

    def test_not_before_beyond_leeway(self, verifier, signing_key) -> None:
        """A token not valid for another minute is rejected."""
        token = mint_id_token(signing_key, nbf=int(time.time()) + 60)
        assert _reason(verifier, token) == VerificationFailure.NOT_YET_VALID

    def test_issued_at_is_not_checked(self, verifier, signing_key) -> None:
        """Future iat values are tolerated."""
        token = mint_id_token(signing_key, iat=int(time.time()) + 3600)
        assert verifier.verify(token).subject

    def test_audience(self, verifier, signing_key) -> None:
        """The audience must contain the client id."""
        assert _reason(verifier, mint_id_token(signing_key, aud="someone-else")) == VerificationFailure.AUDIENCE
        assert verifier.verify(mint_id_token(signing_key, aud=[CLIENT_ID, "other"])).subject

    def test_audience_not_checked_without_configuration(self, signing_key) -> None:
        """Without a configured audience any aud value passes."""
        keys = parse_key_set({"keys": [public_jwk(signing_key)]})
        verifier = TokenVerifier.for_keys(ISSUER, keys)
        assert verifier.verify(mint_id_token(signing_key, aud="anything")).subject

    def test_missing_subject(self, verifier, signing_key) -> None:
        """Tokens without a subject are rejected."""
        assert _reason(verifier, mint_id_token(signing_key, sub=None)) == VerificationFailure.MISSING_CLAIM
