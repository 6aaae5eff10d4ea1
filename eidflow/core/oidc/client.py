"""OIDC client for a public (secretless) application.

Builds PKCE-bound authorization requests and end-session requests, and
exchanges authorization codes for tokens.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import urlencode

import httpx

from eidflow.core.errors import EndSessionUnsupportedError
from eidflow.core.logging import LoggingClient
from eidflow.core.oidc.discovery import ProviderMetadata


def generate_code_verifier(length: int = 64) -> str:
    """Generate a PKCE code verifier.

    The code verifier is a high-entropy cryptographic random string
    between 43 and 128 characters, using unreserved URI characters.

    Args:
        length: Length of the verifier (43-128, default 64).

    Returns:
        URL-safe base64-encoded random string.
    """
    length = max(43, min(128, length))
    num_bytes = (length * 3) // 4 + 1
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii")
    return verifier.rstrip("=")[:length]


def generate_code_challenge(code_verifier: str, method: str = "S256") -> str:
    """Generate a PKCE code challenge from a code verifier.

    Raises:
        ValueError: If method is not supported.
    """
    if method == "plain":
        return code_verifier
    if method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    raise ValueError(f"Unsupported code_challenge_method: {method}")


def generate_state() -> str:
    """Generate an unguessable anti-forgery state value."""
    return secrets.token_urlsafe(32)


class IdentityScheme(StrEnum):
    """Authentication schemes, by their ``acr_values`` selector."""

    MOCK = "urn:grn:authn:mock"
    DK_MITID = "urn:grn:authn:dk:mitid:substantial"
    SE_BANKID = "urn:grn:authn:se:bankid"
    NO_BANKID = "urn:grn:authn:no:bankid"

    @property
    def supports_app_switch(self) -> bool:
        """Whether the scheme hands off to a separate identity app."""
        return self in _APP_SWITCH_SCHEMES


_APP_SWITCH_SCHEMES = frozenset({IdentityScheme.DK_MITID, IdentityScheme.SE_BANKID, IdentityScheme.NO_BANKID})


def scheme_supports_app_switch(scheme: str) -> bool:
    """App-switch support for a scheme given as enum or raw ACR string."""
    try:
        return IdentityScheme(scheme).supports_app_switch
    except ValueError:
        return False


@dataclass(frozen=True)
class AppSwitchHints:
    """Values for the app-switch login hint triplet."""

    resume_uri: str
    platform: str = "android"

    def tokens(self) -> list[str]:
        return [
            f"appswitch:{self.platform}",
            f"appswitch:resumeUrl:{self.resume_uri}",
            "mobile:continue_button:never",
        ]


class RequestKind(StrEnum):
    """What a pending request will complete when its callback arrives."""

    AUTHORIZATION = "authorization"
    END_SESSION = "end_session"


@dataclass(frozen=True)
class RequestDescriptor:
    """An authorization or end-session request handed to the external agent."""

    kind: RequestKind
    uri: str
    state: str
    redirect_uri: str
    code_verifier: str | None = field(default=None, repr=False)
    code_challenge: str | None = None
    scheme: str | None = None


def build_authorization_request(
    metadata: ProviderMetadata,
    client_id: str,
    redirect_uri: str,
    scheme: str,
    extra_hints: Iterable[str] = (),
    app_switch: AppSwitchHints | None = None,
) -> RequestDescriptor:
    """Create a PKCE-bound authorization request.

    A fresh state and PKCE verifier are generated on every call. The
    scheme travels as ``acr_values``. When ``app_switch`` is given and the
    scheme supports it, the app-switch hint triplet leads the login hint.

    Args:
        metadata: Provider metadata with the authorization endpoint.
        client_id: OAuth2 client ID.
        redirect_uri: Callback URI the external agent must detect.
        scheme: ACR value selecting the identity scheme.
        extra_hints: Additional login hint tokens.
        app_switch: App-switch hint values, if app switching is wanted.

    Returns:
        RequestDescriptor of kind AUTHORIZATION.
    """
    state = generate_state()
    code_verifier = generate_code_verifier()
    code_challenge = generate_code_challenge(code_verifier)

    hints: list[str] = []
    if app_switch is not None and scheme_supports_app_switch(scheme):
        hints.extend(app_switch.tokens())
    hints.extend(extra_hints)

    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": "openid",
        "prompt": "login",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "acr_values": str(scheme),
    }
    if hints:
        params["login_hint"] = " ".join(hints)

    return RequestDescriptor(
        kind=RequestKind.AUTHORIZATION,
        uri=f"{metadata.authorization_endpoint}?{urlencode(params)}",
        state=state,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        code_challenge=code_challenge,
        scheme=str(scheme),
    )


def build_end_session_request(
    metadata: ProviderMetadata,
    id_token_hint: str | None,
    post_logout_redirect_uri: str,
) -> RequestDescriptor:
    """Create an end-session (logout) request.

    ``id_token_hint`` may be None, in which case logout is best-effort.

    Raises:
        EndSessionUnsupportedError: If the provider has no end-session endpoint.
    """
    if not metadata.end_session_endpoint:
        raise EndSessionUnsupportedError("Provider does not publish an end_session_endpoint")

    state = generate_state()
    params: dict[str, str] = {"post_logout_redirect_uri": post_logout_redirect_uri, "state": state}
    if id_token_hint:
        params["id_token_hint"] = id_token_hint

    return RequestDescriptor(
        kind=RequestKind.END_SESSION,
        uri=f"{metadata.end_session_endpoint}?{urlencode(params)}",
        state=state,
        redirect_uri=post_logout_redirect_uri,
    )


@dataclass
class TokenResponse:
    """Represents an OAuth2 token response."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    id_token: str | None = None
    scope: str | None = None

    raw_response: dict[str, Any] = field(default_factory=dict, repr=False)

    error: str | None = None
    error_description: str | None = None

    @property
    def is_success(self) -> bool:
        """A token response is usable when it carries an ID token and no error."""
        return self.error is None and bool(self.id_token)


class OIDCClient:
    """Token endpoint client for a public client."""

    def __init__(self, client_id: str, http_client: LoggingClient) -> None:
        self.client_id = client_id
        self.http_client = http_client

    def exchange_code(
        self,
        metadata: ProviderMetadata,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            metadata: Provider metadata with the token endpoint.
            code: Authorization code from the callback.
            code_verifier: PKCE verifier of the originating request.
            redirect_uri: Redirect URI used in the authorization request.

        Returns:
            TokenResponse; failures are reported in ``error``.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }

        try:
            response = self.http_client.post(
                metadata.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            return TokenResponse(
                access_token="",
                token_type="",
                error="http_error",
                error_description=f"HTTP error during token exchange: {e}",
            )

        try:
            response_data = response.json()
        except ValueError:
            response_data = {}

        if not isinstance(response_data, dict):
            response_data = {}

        if response.status_code != 200:
            return TokenResponse(
                access_token="",
                token_type="",
                error=response_data.get("error", "token_error"),
                error_description=response_data.get(
                    "error_description",
                    f"Token request failed with status {response.status_code}",
                ),
                raw_response=response_data,
            )

        token_response = TokenResponse(
            access_token=response_data.get("access_token", ""),
            token_type=response_data.get("token_type", "Bearer"),
            expires_in=response_data.get("expires_in"),
            id_token=response_data.get("id_token"),
            scope=response_data.get("scope"),
            raw_response=response_data,
        )
        if not token_response.id_token:
            token_response.error = "missing_id_token"
            token_response.error_description = "Token response did not include an id_token"
        return token_response
