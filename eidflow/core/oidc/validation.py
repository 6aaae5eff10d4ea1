"""ID token verification.

Verifies the signature of an ID token against the session key set and
checks its issuer and time claims. A token that fails any check is
rejected as a whole.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import jwt

from eidflow.core.errors import TokenVerificationError, UnknownKeyError
from eidflow.core.oidc.keys import KeyRecord

# Leeway for the not-before claim, to tolerate clock skew
NOT_BEFORE_LEEWAY_SECONDS = 5

# Asymmetric algorithms only - symmetric algs require a shared secret
_SECURE_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512", "EdDSA"}
)


class VerificationFailure(StrEnum):
    """Why a token was rejected."""

    MALFORMED = "malformed"
    ALGORITHM = "algorithm"
    SIGNATURE = "signature"
    ISSUER = "issuer"
    AUDIENCE = "audience"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    MISSING_CLAIM = "missing_claim"


@dataclass(frozen=True)
class VerifiedClaims:
    """Claims of an ID token that passed verification."""

    raw_token: str = field(repr=False)
    subject: str
    identity_scheme: str | None = None
    display_name: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw_token: str, payload: dict[str, Any]) -> VerifiedClaims:
        """Build claims from a verified payload.

        The identity scheme is read from ``authenticationtype``, falling back
        to ``acr`` and then ``identityscheme``.
        """
        scheme = payload.get("authenticationtype") or payload.get("acr") or payload.get("identityscheme")
        return cls(
            raw_token=raw_token,
            subject=str(payload["sub"]),
            identity_scheme=scheme,
            display_name=payload.get("name"),
            claims=dict(payload),
        )


# Ordered most specific first: several PyJWT errors subclass others.
_ERROR_REASONS: list[tuple[type[jwt.exceptions.PyJWTError], VerificationFailure]] = [
    (jwt.exceptions.InvalidSignatureError, VerificationFailure.SIGNATURE),
    (jwt.exceptions.ExpiredSignatureError, VerificationFailure.EXPIRED),
    (jwt.exceptions.ImmatureSignatureError, VerificationFailure.NOT_YET_VALID),
    (jwt.exceptions.InvalidIssuerError, VerificationFailure.ISSUER),
    (jwt.exceptions.InvalidAudienceError, VerificationFailure.AUDIENCE),
    (jwt.exceptions.MissingRequiredClaimError, VerificationFailure.MISSING_CLAIM),
    (jwt.exceptions.InvalidAlgorithmError, VerificationFailure.ALGORITHM),
    (jwt.exceptions.DecodeError, VerificationFailure.MALFORMED),
]


def _reason_for(error: jwt.exceptions.PyJWTError) -> VerificationFailure:
    for error_type, reason in _ERROR_REASONS:
        if isinstance(error, error_type):
            return reason
    return VerificationFailure.MALFORMED


class TokenVerifier:
    """Verifies ID tokens issued by one issuer."""

    def __init__(
        self,
        issuer: str,
        find_key: Callable[[str | None], KeyRecord | None],
        audience: str | None = None,
        not_before_leeway: int = NOT_BEFORE_LEEWAY_SECONDS,
    ) -> None:
        """Initialize the verifier.

        Args:
            issuer: Expected ``iss`` value, compared exactly.
            find_key: Looks a key up by ``kid`` in the session key set.
            audience: Expected ``aud`` value; not checked when None.
            not_before_leeway: Seconds of leeway for the ``nbf`` claim.
        """
        self.issuer = issuer
        self.find_key = find_key
        self.audience = audience
        self.not_before_leeway = not_before_leeway

    @classmethod
    def for_keys(cls, issuer: str, keys: list[KeyRecord], **kwargs: Any) -> TokenVerifier:
        """Build a verifier over a fixed list of keys."""
        by_id = {key.key_id: key for key in keys}
        return cls(issuer, lambda key_id: by_id.get(key_id) if key_id else None, **kwargs)

    def verify(self, raw_token: str) -> VerifiedClaims:
        """Verify a signed token and return its claims.

        Steps, in order: decode the header without trusting it, locate the
        key named by ``kid``, verify the signature with that key, check the
        issuer, then the time claims. ``iat`` is never checked since
        issued-at values in the future are common with clock drift.

        Raises:
            UnknownKeyError: If ``kid`` names no key in the key set.
            TokenVerificationError: On any structural, signature or claim failure.
        """
        try:
            header = jwt.get_unverified_header(raw_token)
        except jwt.exceptions.PyJWTError as e:
            raise TokenVerificationError(VerificationFailure.MALFORMED, f"Invalid JWT format: {e}") from e

        key_id = header.get("kid")
        key = self.find_key(key_id)
        if key is None:
            raise UnknownKeyError(key_id)

        algorithm = header.get("alg")
        if algorithm not in _SECURE_ALGORITHMS or algorithm != key.algorithm:
            raise TokenVerificationError(
                VerificationFailure.ALGORITHM,
                f"Token algorithm {algorithm!r} does not match key {key.key_id!r} ({key.algorithm})",
            )

        try:
            payload: dict[str, Any] = jwt.decode(
                raw_token,
                key.public_key,
                algorithms=[key.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": ["iss", "sub"],
                    "verify_iat": False,
                    "verify_nbf": False,
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.exceptions.PyJWTError as e:
            raise TokenVerificationError(_reason_for(e), str(e)) from e

        self._check_not_before(payload)
        return VerifiedClaims.from_payload(raw_token, payload)

    def _check_not_before(self, payload: dict[str, Any]) -> None:
        nbf = payload.get("nbf")
        if nbf is None:
            return
        if not isinstance(nbf, (int, float)):
            raise TokenVerificationError(VerificationFailure.MALFORMED, "Not Before claim (nbf) must be a number")
        if nbf > time.time() + self.not_before_leeway:
            raise TokenVerificationError(VerificationFailure.NOT_YET_VALID, "The token is not yet valid (nbf)")
