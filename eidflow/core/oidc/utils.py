"""Claim formatting for display."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from eidflow.core.oidc.client import IdentityScheme

_CLAIM_DESCRIPTIONS = {
    "iss": "Issuer",
    "sub": "Subject",
    "aud": "Audience",
    "exp": "Expiration Time",
    "iat": "Issued At",
    "nbf": "Not Before",
    "jti": "JWT ID",
    "auth_time": "Authentication Time",
    "acr": "Authentication Context Class",
    "amr": "Authentication Methods",
    "authenticationtype": "Identity Scheme",
    "identityscheme": "Identity Scheme",
    "authenticationmethod": "Authentication Method",
    "authenticationinstant": "Authentication Instant",
    "name": "Full Name",
    "given_name": "Given Name",
    "family_name": "Family Name",
    "birthdate": "Birthdate",
    "country": "Country",
    "uuid": "Identity Provider UUID",
    "cprNumberIdentifier": "CPR Number",
    "ssn": "Personal Identity Number",
    "socialno": "National Identity Number",
}

_TIMESTAMP_CLAIMS = frozenset({"exp", "iat", "nbf", "auth_time"})

_SCHEME_NAMES = {
    IdentityScheme.MOCK: "Mock",
    IdentityScheme.DK_MITID: "Danish MitID",
    IdentityScheme.SE_BANKID: "Swedish BankID",
    IdentityScheme.NO_BANKID: "Norwegian BankID",
}


def describe_scheme(acr: str | None) -> str:
    """Human-readable name for an identity scheme ACR value."""
    if not acr:
        return "Unknown"
    try:
        return _SCHEME_NAMES[IdentityScheme(acr)]
    except ValueError:
        return acr


def format_token_claims(payload: dict[str, Any]) -> list[tuple[str, str, str]]:
    """Format token claims for display.

    Args:
        payload: Verified ID token claims.

    Returns:
        List of (claim_name, claim_value, description) tuples.
    """
    claims = []
    for key, value in payload.items():
        description = _CLAIM_DESCRIPTIONS.get(key, "Custom Claim")

        if key in _TIMESTAMP_CLAIMS and isinstance(value, (int, float)):
            formatted_value = f"{value} ({datetime.fromtimestamp(value, tz=UTC).isoformat()})"
        elif isinstance(value, dict):
            formatted_value = json.dumps(value, indent=2)
        elif isinstance(value, list):
            formatted_value = ", ".join(str(v) for v in value)
        else:
            formatted_value = str(value)

        claims.append((key, formatted_value, description))

    return claims
