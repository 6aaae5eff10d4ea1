"""Error types raised by the login flow.

None of these are fatal to a session: after any of them the flow is idle
again and accepts a new request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eidflow.core.launcher.base import AgentOutcome
    from eidflow.core.oidc.validation import VerificationFailure


class EidFlowError(Exception):
    """Base exception for login flow errors."""


class NotReadyError(EidFlowError):
    """Raised when provider metadata or signing keys have not been loaded."""


class FlowBusyError(EidFlowError):
    """Raised when a login or logout is started while another is pending."""


class MetadataFetchError(EidFlowError):
    """Raised when the provider metadata document cannot be fetched or parsed."""


class KeySetFetchError(EidFlowError):
    """Raised when the provider key set cannot be fetched or parsed."""


class EndSessionUnsupportedError(EidFlowError):
    """Raised when the provider publishes no end_session_endpoint."""


class LaunchFailureError(EidFlowError):
    """Raised when the external agent reports a terminal failure."""

    def __init__(self, outcome: AgentOutcome, reason: str | None = None) -> None:
        self.outcome = outcome
        self.reason = reason
        message = f"External agent failed: {outcome}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class StateMismatchError(EidFlowError):
    """A callback carried a state that matches no pending request.

    Only used for logging; mismatched callbacks are dropped, never surfaced.
    """


class AuthorizationError(EidFlowError):
    """Raised when the callback carries OAuth error parameters."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        message = f"Authorization failed: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)


class TokenExchangeError(EidFlowError):
    """Raised when exchanging the authorization code for tokens fails."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        super().__init__(description or error)


class UnknownKeyError(EidFlowError):
    """Raised when a token names a key that is not in the session key set."""

    def __init__(self, key_id: str | None) -> None:
        self.key_id = key_id
        super().__init__(f"Unknown key {key_id}")


class TokenVerificationError(EidFlowError):
    """Raised when a token fails a structural, signature or claim check."""

    def __init__(self, reason: VerificationFailure, message: str) -> None:
        self.reason = reason
        super().__init__(f"{reason}: {message}")


class CallbackTimeoutError(EidFlowError):
    """Raised when no callback arrives within the configured timeout."""
