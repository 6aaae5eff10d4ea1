"""Pytest configuration and fixtures."""

from __future__ import annotations

import base64
import json
import socket
import threading
import time
from collections.abc import Callable, Generator
from typing import Any
from urllib.parse import parse_qs, urlencode

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from jwt.algorithms import RSAAlgorithm

from eidflow.core.config import FlowConfig
from eidflow.core.launcher.base import AgentResult, ExternalAgentLauncher, PresentationMode, ResultHandler
from eidflow.core.logging import LoggingClient, ProtocolLogger
from eidflow.core.oidc.client import RequestDescriptor

ISSUER = "https://example.criipto.id"
CLIENT_ID = "urn:my:application:identifier"
KEY_ID = "signing-key-1"
REDIRECT_URI = "http://127.0.0.1:8765/callback"
APP_SWITCH_URI = "http://127.0.0.1:8765/appswitch"


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """RSA key the fake provider signs ID tokens with."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_key() -> rsa.RSAPrivateKey:
    """An RSA key the provider does not publish."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str = KEY_ID) -> dict[str, Any]:
    jwk: dict[str, Any] = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


@pytest.fixture
def jwks(signing_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    return {"keys": [public_jwk(signing_key)]}


def mint_id_token(
    private_key: rsa.RSAPrivateKey,
    kid: str | None = KEY_ID,
    algorithm: str = "RS256",
    **overrides: Any,
) -> str:
    """Sign an ID token; ``overrides`` replace claims, a None value drops one."""
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "{2f4a8b6e-5c1d-4e3f-9a7b-0c2d1e3f4a5b}",
        "iat": now,
        "nbf": now,
        "exp": now + 1200,
        "authenticationtype": "urn:grn:authn:mock",
        "name": "Mock User",
    }
    claims.update(overrides)
    claims = {name: value for name, value in claims.items() if value is not None}
    headers = {"kid": kid} if kid is not None else {}
    return jwt.encode(claims, private_key, algorithm=algorithm, headers=headers)


def sign_compact(private_key: rsa.RSAPrivateKey, header: dict[str, Any], claims: dict[str, Any]) -> str:
    """RS256-sign a JWT by hand, for headers PyJWT refuses to produce."""

    def segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode().rstrip("=")

    signing_input = f"{segment(json.dumps(header).encode())}.{segment(json.dumps(claims).encode())}"
    signature = private_key.sign(signing_input.encode(), padding.PKCS1v15(), hashes.SHA256())
    return f"{signing_input}.{segment(signature)}"


def discovery_document(issuer: str = ISSUER, with_end_session: bool = True) -> dict[str, Any]:
    document = {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth2/authorize",
        "token_endpoint": f"{issuer}/oauth2/token",
        "jwks_uri": f"{issuer}/.well-known/jwks",
        "response_types_supported": ["code"],
    }
    if with_end_session:
        document["end_session_endpoint"] = f"{issuer}/oidc/logout"
    return document


class FakeProvider:
    """In-memory identity provider behind an ``httpx.MockTransport``."""

    def __init__(self, jwks: dict[str, Any], id_token: str | None = None) -> None:
        self.metadata: dict[str, Any] | None = discovery_document()
        self.jwks: dict[str, Any] | None = jwks
        self.id_token = id_token
        self.token_status = 200
        self.token_error: dict[str, Any] | None = None
        self.requests: list[httpx.Request] = []

    @property
    def token_requests(self) -> list[dict[str, list[str]]]:
        return [parse_qs(r.content.decode()) for r in self.requests if r.url.path == "/oauth2/token"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            if self.metadata is None:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json=self.metadata)
        if path == "/.well-known/jwks.json":
            if self.jwks is None:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json=self.jwks)
        if path == "/oauth2/token":
            if self.token_error is not None:
                return httpx.Response(self.token_status, json=self.token_error)
            body: dict[str, Any] = {"access_token": "opaque-access-token", "token_type": "Bearer", "expires_in": 1200}
            if self.id_token is not None:
                body["id_token"] = self.id_token
            return httpx.Response(self.token_status, json=body)
        return httpx.Response(404, text="not found")


@pytest.fixture
def provider(jwks: dict[str, Any], signing_key: rsa.RSAPrivateKey) -> FakeProvider:
    return FakeProvider(jwks, id_token=mint_id_token(signing_key))


@pytest.fixture
def protocol_logger() -> ProtocolLogger:
    return ProtocolLogger()


@pytest.fixture
def http_client(provider: FakeProvider, protocol_logger: ProtocolLogger) -> Generator[LoggingClient, None, None]:
    client = LoggingClient(protocol_logger=protocol_logger, transport=httpx.MockTransport(provider.handler))
    yield client
    client.close()


@pytest.fixture
def flow_config() -> FlowConfig:
    return FlowConfig(domain=ISSUER, client_id=CLIENT_ID, redirect_uri=REDIRECT_URI, app_switch_uri=APP_SWITCH_URI)


def callback_uri(base: str = REDIRECT_URI, **params: str) -> str:
    return f"{base}?{urlencode(params)}"


Presenter = Callable[[RequestDescriptor, ResultHandler], None]


class FakeLauncher(ExternalAgentLauncher):
    """Launcher that hands each request to ``presenter`` on a worker thread."""

    mode = PresentationMode.GENERAL_BROWSER_TAB

    def __init__(self, presenter: Presenter | None = None) -> None:
        self.presenter = presenter
        self.requests: list[RequestDescriptor] = []
        self.prepared = False
        self.closed = False

    def prepare(self) -> None:
        self.prepared = True

    def _present(self, request: RequestDescriptor, deliver: ResultHandler) -> None:
        self.requests.append(request)
        if self.presenter is not None:
            threading.Thread(target=self.presenter, args=(request, deliver), daemon=True).start()

    def close(self) -> None:
        self.closed = True


def approve(code: str = "auth-code-123") -> Presenter:
    """Presenter that redirects back with a code and the request's own state."""

    def present(request: RequestDescriptor, deliver: ResultHandler) -> None:
        deliver(AgentResult.success(callback_uri(request.redirect_uri, code=code, state=request.state)))

    return present


def return_to(request: RequestDescriptor, deliver: ResultHandler) -> None:
    """Presenter for logout: redirects back with the request's state only."""
    deliver(AgentResult.success(callback_uri(request.redirect_uri, state=request.state)))


class ResultSink:
    """Collects launcher results delivered on other threads."""

    def __init__(self) -> None:
        self.results: list[AgentResult] = []
        self._event = threading.Event()

    def __call__(self, result: AgentResult) -> None:
        self.results.append(result)
        self._event.set()

    def wait(self, timeout: float = 5.0) -> AgentResult:
        assert self._event.wait(timeout), "no result delivered"
        return self.results[0]


@pytest.fixture
def occupied_port() -> Generator[int, None, None]:
    """A loopback port another socket is already listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        yield sock.getsockname()[1]
