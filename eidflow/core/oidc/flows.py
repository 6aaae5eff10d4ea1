"""Login session controller.

Owns the provider metadata and signing keys for the session and runs one
login or logout request at a time:

1. Build a PKCE-bound authorization (or end-session) request
2. Register it under its ``state`` value
3. Hand its URI to the external agent launcher
4. Match the agent's result back to the pending request by ``state``
5. Exchange the code for tokens and verify the ID token
6. Resolve the blocked caller and return to idle
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import parse_qs, urlparse

from eidflow.core.appswitch import AppSwitchResume
from eidflow.core.config import FlowConfig
from eidflow.core.errors import (
    AuthorizationError,
    CallbackTimeoutError,
    EidFlowError,
    FlowBusyError,
    LaunchFailureError,
    NotReadyError,
    StateMismatchError,
    TokenExchangeError,
)
from eidflow.core.launcher import (
    AgentResult,
    BrowserCapabilityProbe,
    EphemeralAuthTabLauncher,
    ExternalAgentLauncher,
    GeneralBrowserTabLauncher,
    PresentationMode,
    select_presentation_mode,
)
from eidflow.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger
from eidflow.core.oidc.client import (
    AppSwitchHints,
    IdentityScheme,
    OIDCClient,
    RequestDescriptor,
    RequestKind,
    build_authorization_request,
    build_end_session_request,
)
from eidflow.core.oidc.discovery import ProviderMetadata, ProviderMetadataResolver
from eidflow.core.oidc.keys import KeyRecord, KeySetCache
from eidflow.core.oidc.validation import TokenVerifier, VerifiedClaims
from eidflow.web.receiver import CallbackReceiver

logger = logging.getLogger(__name__)


class FlowStatus(StrEnum):
    """Where the session is in its request lifecycle."""

    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    RESOLVING = "resolving"


@dataclass
class PendingRequest:
    """A request handed to the external agent, waiting for its result."""

    descriptor: RequestDescriptor
    future: Future[Any] = field(default_factory=Future)


def build_default_launcher(
    config: FlowConfig,
    probe: BrowserCapabilityProbe,
    app_switch: AppSwitchResume | None = None,
) -> ExternalAgentLauncher:
    """Create the launcher for the presentation mode this machine supports."""
    receiver = CallbackReceiver(
        [config.redirect_uri, config.logout_redirect_uri],
        config.app_switch_uri,
        app_switch=app_switch,
    )
    settings = config.presentation
    mode = select_presentation_mode(probe, prefer_auth_tab=settings.prefer_auth_tab)
    if mode == PresentationMode.EPHEMERAL_AUTH_TAB:
        return EphemeralAuthTabLauncher(receiver, probe=probe, ready_timeout=settings.agent_ready_timeout)
    return GeneralBrowserTabLauncher(
        receiver,
        preferred_browsers=settings.preferred_browsers,
        probe=probe,
        ready_timeout=settings.agent_ready_timeout,
    )


class LoginFlow:
    """Runs PKCE logins and logouts against one issuer, one request at a time.

    ``login`` and ``logout`` block the calling thread until the external
    agent reports back. Agent results arrive on another thread through
    :meth:`handle_agent_result`, which matches them to the pending request
    by ``state`` and resolves it.
    """

    def __init__(
        self,
        config: FlowConfig,
        launcher: ExternalAgentLauncher | None = None,
        probe: BrowserCapabilityProbe | None = None,
        http_client: LoggingClient | None = None,
        protocol_logger: ProtocolLogger | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Issuer, client and redirect settings.
            launcher: External agent launcher. Chosen from the installed
                browsers when not given.
            probe: Browser capability probe used to pick the launcher.
            http_client: HTTP client for metadata, keys and token exchange.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
        """
        self.config = config
        self.protocol_logger = protocol_logger or get_protocol_logger()
        self.http_client = http_client or LoggingClient(
            protocol_logger=self.protocol_logger,
            timeout=config.http_timeout,
        )
        self.app_switch = AppSwitchResume()
        self.launcher = launcher or build_default_launcher(
            config, probe or BrowserCapabilityProbe(), app_switch=self.app_switch
        )

        self._resolver = ProviderMetadataResolver(self.http_client)
        self._key_cache = KeySetCache(self.http_client)
        self._oidc_client = OIDCClient(config.client_id, self.http_client)

        self._lock = threading.Lock()
        self._status = FlowStatus.IDLE
        self._pending: dict[str, PendingRequest] = {}
        self._provider_metadata: ProviderMetadata | None = None
        self._signing_keys: list[KeyRecord] | None = None

    @property
    def presentation_mode(self) -> PresentationMode:
        return self.launcher.mode

    @property
    def provider_metadata(self) -> ProviderMetadata | None:
        return self._provider_metadata

    @property
    def signing_keys(self) -> list[KeyRecord] | None:
        return self._signing_keys

    @property
    def status(self) -> FlowStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        """Whether both provider metadata and signing keys are loaded."""
        return self._provider_metadata is not None and self._signing_keys is not None

    def prepare(self) -> bool:
        """Load provider metadata and signing keys, then warm the launcher.

        Both fetches run concurrently. A failed fetch is logged and leaves
        its slot unset, so the session stays not-ready until ``prepare`` is
        called again.

        Returns:
            Whether the session is ready for login.
        """
        issuer = self.config.issuer
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="eidflow-prepare") as pool:
            metadata_future = pool.submit(self._resolver.resolve, issuer)
            keys_future = pool.submit(self._key_cache.fetch_all, issuer)

        try:
            self._provider_metadata = metadata_future.result()
        except EidFlowError as e:
            logger.error(f"Could not load provider metadata for {issuer}: {e}")
        try:
            self._signing_keys = keys_future.result()
            logger.info(f"Loaded {len(self._signing_keys)} signing key(s) for {issuer}")
        except EidFlowError as e:
            logger.error(f"Could not load signing keys for {issuer}: {e}")

        receiver = getattr(self.launcher, "receiver", None)
        if receiver is not None and not receiver.app_switch_serveable:
            logger.warning(f"App-switch URI {self.config.app_switch_uri} is not served by the local receiver")

        try:
            self.launcher.prepare()
        except OSError as e:
            logger.warning(f"Could not warm up {self.launcher.mode}: {e}")

        return self.is_ready

    def login(self, scheme: IdentityScheme | str, extra_hints: Iterable[str] = ()) -> VerifiedClaims:
        """Run an authorization request and return the verified ID token claims.

        Args:
            scheme: Identity scheme, or a raw ``acr_values`` string.
            extra_hints: Additional login hint tokens.

        Raises:
            NotReadyError: If metadata or keys are not loaded. The launcher is not invoked.
            FlowBusyError: If another request is pending.
            LaunchFailureError: If the external agent reported a failure.
            AuthorizationError: If the provider returned an OAuth error.
            TokenExchangeError: If the code could not be exchanged.
            UnknownKeyError: If the ID token names a key outside the key set.
            TokenVerificationError: If the ID token failed verification.
            CallbackTimeoutError: If ``callback_timeout`` elapsed first.
        """
        metadata = self._require_ready()
        descriptor = build_authorization_request(
            metadata,
            client_id=self.config.client_id,
            redirect_uri=self.config.redirect_uri,
            scheme=scheme,
            extra_hints=extra_hints,
            app_switch=AppSwitchHints(self.config.app_switch_uri, platform=self.config.app_switch_platform),
        )
        return self._run(descriptor)

    def logout(self, id_token: str | None = None) -> None:
        """Run an end-session request.

        ``id_token`` is sent as ``id_token_hint`` when given; logout without
        it is best-effort on the provider side.

        Raises:
            NotReadyError: If metadata or keys are not loaded.
            FlowBusyError: If another request is pending.
            EndSessionUnsupportedError: If the provider has no end-session endpoint.
            LaunchFailureError: If the external agent reported a failure.
            CallbackTimeoutError: If ``callback_timeout`` elapsed first.
        """
        metadata = self._require_ready()
        descriptor = build_end_session_request(metadata, id_token, self.config.logout_redirect_uri)
        self._run(descriptor)

    def handle_agent_result(self, result: AgentResult, request_state: str | None = None) -> None:
        """Resolve the pending request from an external agent result.

        Safe to call from any thread. A successful result is matched by the
        ``state`` in its callback URI; a callback with an unknown state is
        logged and dropped, leaving the pending request in place.

        Args:
            result: Terminal result reported by the launcher.
            request_state: State of the request the launch was for. When
                given, failures for any other request are ignored.
        """
        if not result.is_success:
            self._handle_failure(result, request_state)
            return

        params = parse_qs(urlparse(result.callback_uri or "").query)
        state = _first(params, "state")

        with self._lock:
            pending = self._pending.pop(state, None) if state else None
            if pending is None:
                mismatch = StateMismatchError(f"Callback state {state!r} matches no pending request")
                logger.warning(f"Dropping callback: {mismatch}")
                return
            self._status = FlowStatus.RESOLVING

        descriptor = pending.descriptor
        if descriptor.kind == RequestKind.END_SESSION:
            logger.info("Logout completed")
            self._finish(pending, result=None)
            return

        try:
            claims = self._complete_authorization(descriptor, params)
        except EidFlowError as e:
            logger.warning(f"Login failed: {e}")
            self._finish(pending, error=e)
            return
        except Exception as e:
            logger.exception("Unexpected error while resolving the login callback")
            self._finish(pending, error=e)
            return
        logger.info(f"Login completed for subject {claims.subject}")
        self._finish(pending, result=claims)

    def close(self) -> None:
        """Release the launcher and HTTP client."""
        self.launcher.close()
        self.http_client.close()

    def __enter__(self) -> LoginFlow:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_ready(self) -> ProviderMetadata:
        if not self.is_ready or self._provider_metadata is None:
            raise NotReadyError("Provider metadata and signing keys are not loaded; call prepare() first")
        return self._provider_metadata

    def _run(self, descriptor: RequestDescriptor) -> Any:
        pending = PendingRequest(descriptor)
        with self._lock:
            if self._status != FlowStatus.IDLE:
                raise FlowBusyError(f"Cannot start {descriptor.kind}: a request is already {self._status}")
            self._pending[descriptor.state] = pending
            self._status = FlowStatus.AWAITING_CALLBACK

        self.protocol_logger.start_flow(descriptor.state[:8], str(descriptor.kind))
        logger.info(f"Started {descriptor.kind} request")

        def deliver(result: AgentResult) -> None:
            self.handle_agent_result(result, request_state=descriptor.state)

        try:
            try:
                self.launcher.launch(descriptor, deliver)
            except BaseException:
                self._abandon(pending)
                raise
            return self._wait(pending)
        finally:
            self.protocol_logger.end_flow()

    def _wait(self, pending: PendingRequest) -> Any:
        timeout = self.config.callback_timeout
        try:
            return pending.future.result(timeout=timeout)
        except FutureTimeoutError:
            if not self._abandon(pending):
                # The callback arrived and is being resolved right now
                return pending.future.result()
            raise CallbackTimeoutError(
                f"No callback for {pending.descriptor.kind} request within {timeout} seconds"
            ) from None

    def _abandon(self, pending: PendingRequest) -> bool:
        with self._lock:
            if self._pending.pop(pending.descriptor.state, None) is None:
                return False
            self._status = FlowStatus.IDLE
            return True

    def _handle_failure(self, result: AgentResult, request_state: str | None) -> None:
        with self._lock:
            if request_state is not None:
                pending = self._pending.pop(request_state, None)
            elif len(self._pending) == 1:
                pending = self._pending.pop(next(iter(self._pending)))
            else:
                pending = None
            if pending is None:
                logger.warning(f"Dropping {result.outcome} result: no matching pending request")
                return
            self._status = FlowStatus.RESOLVING

        logger.warning(f"External agent reported {result.outcome}: {result.reason}")
        self._finish(pending, error=LaunchFailureError(result.outcome, result.reason))

    def _complete_authorization(self, descriptor: RequestDescriptor, params: dict[str, list[str]]) -> VerifiedClaims:
        error = _first(params, "error")
        if error:
            raise AuthorizationError(error, _first(params, "error_description"))

        code = _first(params, "code")
        if not code:
            raise AuthorizationError("invalid_response", "Callback carried neither code nor error")

        metadata = self._provider_metadata
        if metadata is None or descriptor.code_verifier is None:
            raise NotReadyError("Session lost its provider metadata")

        token_response = self._oidc_client.exchange_code(
            metadata,
            code=code,
            code_verifier=descriptor.code_verifier,
            redirect_uri=descriptor.redirect_uri,
        )
        if not token_response.is_success or token_response.id_token is None:
            raise TokenExchangeError(token_response.error or "token_error", token_response.error_description)

        verifier = TokenVerifier.for_keys(
            self.config.issuer,
            self._signing_keys or [],
            audience=self.config.client_id if self.config.verify_audience else None,
        )
        return verifier.verify(token_response.id_token)

    def _finish(self, pending: PendingRequest, result: Any = None, error: BaseException | None = None) -> None:
        with self._lock:
            self._status = FlowStatus.IDLE
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(result)


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None
