"""External agent launcher contract.

A launcher presents an authorization (or end-session) URI in a browser-like
agent outside this process and eventually reports exactly one terminal
result: success with the callback URI, or a failure outcome.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

if TYPE_CHECKING:
    from eidflow.core.oidc.client import RequestDescriptor


logger = logging.getLogger(__name__)


class PresentationMode(StrEnum):
    """How the authorization URI is presented to the user."""

    EPHEMERAL_AUTH_TAB = "ephemeral_auth_tab"
    GENERAL_BROWSER_TAB = "general_browser_tab"


class AgentOutcome(StrEnum):
    """Terminal outcome reported by an external agent."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    MALFORMED_RESPONSE = "malformed_response"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_TIMED_OUT = "verification_timed_out"
    LAUNCH_FAILED = "launch_failed"


@dataclass(frozen=True)
class AgentResult:
    """Terminal result of one launch."""

    outcome: AgentOutcome
    callback_uri: str | None = None
    reason: str | None = None

    @property
    def is_success(self) -> bool:
        return self.outcome == AgentOutcome.SUCCESS

    @classmethod
    def success(cls, callback_uri: str) -> AgentResult:
        return cls(AgentOutcome.SUCCESS, callback_uri=callback_uri)

    @classmethod
    def failure(cls, outcome: AgentOutcome, reason: str | None = None) -> AgentResult:
        return cls(outcome, reason=reason)


ResultHandler = Callable[[AgentResult], None]

_CALLBACK_PARAMS = frozenset({"code", "state", "error"})


def classify_callback(callback_uri: str) -> AgentResult:
    """Turn a redirect hit into a result; a hit without OAuth parameters is malformed."""
    params = parse_qs(urlparse(callback_uri).query)
    if _CALLBACK_PARAMS.isdisjoint(params):
        return AgentResult.failure(AgentOutcome.MALFORMED_RESPONSE, "Callback carried no OAuth response parameters")
    return AgentResult.success(callback_uri)


class _OneShot:
    """Forwards the first result of a launch and drops the rest."""

    def __init__(self, handler: ResultHandler, launch_id: str) -> None:
        self._handler = handler
        self._launch_id = launch_id
        self._lock = threading.Lock()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def __call__(self, result: AgentResult) -> None:
        with self._lock:
            if self._fired:
                logger.warning(f"Dropping extra result {result.outcome} for launch {self._launch_id}")
                return
            self._fired = True
        self._handler(result)


class ExternalAgentLauncher(ABC):
    """Presents request URIs in an external agent.

    Subclasses implement :meth:`_present`; the base class guarantees the
    handler passed to :meth:`launch` is called exactly once per launch.
    """

    mode: PresentationMode

    def prepare(self) -> None:
        """Warm up the agent before the first launch."""

    @abstractmethod
    def _present(self, request: RequestDescriptor, deliver: ResultHandler) -> None:
        """Show the request URI and arrange for ``deliver`` to receive the result."""

    def launch(self, request: RequestDescriptor, on_result: ResultHandler) -> None:
        """Present ``request.uri``; ``on_result`` receives exactly one terminal result."""
        deliver = _OneShot(on_result, request.state[:8])
        logger.info(f"Launching {self.mode} for {request.kind} request")
        try:
            self._present(request, deliver)
        except Exception as e:
            logger.exception(f"Failed to launch {self.mode}")
            deliver(AgentResult.failure(AgentOutcome.LAUNCH_FAILED, str(e)))

    def close(self) -> None:
        """Release agent resources."""
