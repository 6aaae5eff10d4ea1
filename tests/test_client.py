"""Tests for the authorization request builder and token exchange."""

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from conftest import CLIENT_ID, REDIRECT_URI, discovery_document

from eidflow.core.errors import EndSessionUnsupportedError
from eidflow.core.logging import LoggingClient, ProtocolLogger
from eidflow.core.oidc.client import (
    AppSwitchHints,
    IdentityScheme,
    OIDCClient,
    RequestKind,
    build_authorization_request,
    build_end_session_request,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    scheme_supports_app_switch,
)
from eidflow.core.oidc.discovery import ProviderMetadata

METADATA = ProviderMetadata.from_document(discovery_document())
RESUME = AppSwitchHints("http://127.0.0.1:8765/appswitch")


def _query(uri: str) -> dict[str, str]:
    return {name: values[0] for name, values in parse_qs(urlparse(uri).query).items()}


class TestPKCE:
    """Tests for PKCE helpers."""

    def test_verifier_length_and_alphabet(self) -> None:
        """Verifiers stay within 43-128 unreserved characters."""
        for length in (10, 43, 64, 128, 500):
            verifier = generate_code_verifier(length)
            assert 43 <= len(verifier) <= 128
            assert all(c.isalnum() or c in "-_" for c in verifier)

    def test_s256_challenge(self) -> None:
        """The S256 challenge is the unpadded base64url SHA-256 of the verifier."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
        assert generate_code_challenge(verifier) == expected == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_unsupported_method(self) -> None:
        """Unknown challenge methods are refused."""
        with pytest.raises(ValueError):
            generate_code_challenge("verifier", method="S512")

    def test_states_are_unique(self) -> None:
        """State values do not repeat."""
        assert len({generate_state() for _ in range(50)}) == 50


class TestIdentityScheme:
    """Tests for identity scheme selectors."""

    def test_acr_values(self) -> None:
        """Each scheme maps to its broker ACR value."""
        assert IdentityScheme.MOCK == "urn:grn:authn:mock"
        assert IdentityScheme.DK_MITID == "urn:grn:authn:dk:mitid:substantial"
        assert IdentityScheme.SE_BANKID == "urn:grn:authn:se:bankid"
        assert IdentityScheme.NO_BANKID == "urn:grn:authn:no:bankid"

    def test_app_switch_support(self) -> None:
        """Only schemes with a separate identity app support app switching."""
        assert not IdentityScheme.MOCK.supports_app_switch
        assert IdentityScheme.SE_BANKID.supports_app_switch
        assert scheme_supports_app_switch("urn:grn:authn:no:bankid")
        assert not scheme_supports_app_switch("urn:grn:authn:fi:all")


class TestBuildAuthorizationRequest:
    """Tests for authorization request construction."""

    def test_request_parameters(self) -> None:
        """The URI carries client, redirect, PKCE, scope, prompt and scheme."""
        request = build_authorization_request(METADATA, CLIENT_ID, REDIRECT_URI, IdentityScheme.MOCK)
        params = _query(request.uri)

        assert request.kind == RequestKind.AUTHORIZATION
        assert request.uri.startswith(METADATA.authorization_endpoint + "?")
        assert params["response_type"] == "code"
        assert params["client_id"] == CLIENT_ID
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["scope"] == "openid"
        assert params["prompt"] == "login"
        assert params["acr_values"] == "urn:grn:authn:mock"
        assert params["state"] == request.state
        assert params["code_challenge"] == generate_code_challenge(request.code_verifier)
        assert params["code_challenge_method"] == "S256"
        assert request.redirect_uri == REDIRECT_URI
        assert request.scheme == "urn:grn:authn:mock"

    def test_app_switch_hints_lead_login_hint(self) -> None:
        """App-switch hints come first, followed by caller hints."""
        request = build_authorization_request(
            METADATA, CLIENT_ID, REDIRECT_URI, IdentityScheme.DK_MITID, extra_hints=["sub:1234"], app_switch=RESUME
        )

        assert _query(request.uri)["login_hint"] == (
            "appswitch:android appswitch:resumeUrl:http://127.0.0.1:8765/appswitch "
            "mobile:continue_button:never sub:1234"
        )

    def test_mock_scheme_gets_no_app_switch_hints(self) -> None:
        """Schemes without an identity app never get the app-switch triplet."""
        request = build_authorization_request(
            METADATA, CLIENT_ID, REDIRECT_URI, IdentityScheme.MOCK, app_switch=RESUME
        )
        assert "login_hint" not in _query(request.uri)

    def test_custom_acr_string(self) -> None:
        """Unknown ACR strings are passed through without app-switch hints."""
        request = build_authorization_request(
            METADATA, CLIENT_ID, REDIRECT_URI, "urn:grn:authn:fi:all", app_switch=RESUME
        )
        params = _query(request.uri)
        assert params["acr_values"] == "urn:grn:authn:fi:all"
        assert "login_hint" not in params

    def test_platform_is_configurable(self) -> None:
        """The platform token follows the configured platform."""
        hints = AppSwitchHints("https://app.example.com/resume", platform="ios")
        assert hints.tokens()[0] == "appswitch:ios"
        assert hints.tokens()[1] == "appswitch:resumeUrl:https://app.example.com/resume"

    def test_verifier_not_in_repr(self) -> None:
        """The PKCE verifier is kept out of the descriptor repr."""
        request = build_authorization_request(METADATA, CLIENT_ID, REDIRECT_URI, IdentityScheme.MOCK)
        assert request.code_verifier not in repr(request)


class TestBuildEndSessionRequest:
    """Tests for end-session request construction."""

    def test_with_id_token_hint(self) -> None:
        """The hint, post-logout redirect and state are sent."""
        request = build_end_session_request(METADATA, "raw.id.token", REDIRECT_URI)
        params = _query(request.uri)

        assert request.kind == RequestKind.END_SESSION
        assert params == {"post_logout_redirect_uri": REDIRECT_URI, "state": request.state, "id_token_hint": "raw.id.token"}
        assert request.code_verifier is None

    def test_without_end_session_endpoint(self) -> None:
        """Providers without an end-session endpoint are refused."""
        metadata = ProviderMetadata.from_document(discovery_document(with_end_session=False))
        with pytest.raises(EndSessionUnsupportedError):
            build_end_session_request(metadata, None, REDIRECT_URI)


class TestExchangeCode:
    """Tests for the token endpoint call."""

    def _client(self, handler) -> OIDCClient:
        http_client = LoggingClient(protocol_logger=ProtocolLogger(), transport=httpx.MockTransport(handler))
        return OIDCClient(CLIENT_ID, http_client)

    def test_successful_exchange(self) -> None:
        """A public-client form post returns the token response."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "at", "token_type": "Bearer", "id_token": "a.b.c"})

        response = self._client(handler).exchange_code(METADATA, "code-1", "verifier-1", REDIRECT_URI)

        assert response.is_success
        assert response.id_token == "a.b.c"
        assert seen[0] == {
            "grant_type": ["authorization_code"],
            "code": ["code-1"],
            "redirect_uri": [REDIRECT_URI],
            "client_id": [CLIENT_ID],
            "code_verifier": ["verifier-1"],
        }

    def test_error_response(self) -> None:
        """OAuth error bodies are reported in the response fields."""
        response = self._client(
            lambda request: httpx.Response(400, json={"error": "invalid_grant", "error_description": "used"})
        ).exchange_code(METADATA, "code", "verifier", REDIRECT_URI)

        assert not response.is_success
        assert response.error == "invalid_grant"
        assert response.error_description == "used"

    def test_non_json_error_response(self) -> None:
        """A non-JSON failure still yields an error."""
        response = self._client(lambda request: httpx.Response(502, text="Bad Gateway")).exchange_code(
            METADATA, "code", "verifier", REDIRECT_URI
        )

        assert response.error == "token_error"
        assert "502" in response.error_description

    def test_transport_error(self) -> None:
        """Network failures are reported rather than raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        response = self._client(handler).exchange_code(METADATA, "code", "verifier", REDIRECT_URI)

        assert response.error == "http_error"
