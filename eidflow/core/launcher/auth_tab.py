"""Ephemeral auth tab launcher.

Opens the request URI in a single-purpose app-mode window of a supported
Chromium-family browser, using a throw-away profile so no cookies or
history outlive the request. The callback receiver matches the redirect
and the launcher turns what happens into a structured result.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from eidflow.core.launcher.base import (
    AgentOutcome,
    AgentResult,
    ExternalAgentLauncher,
    PresentationMode,
    ResultHandler,
    classify_callback,
)
from eidflow.core.launcher.capabilities import AuthTabBrowser, BrowserCapabilityProbe
from eidflow.web.receiver import CallbackReceiver

if TYPE_CHECKING:
    from eidflow.core.oidc.client import RequestDescriptor

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[Sequence[str]], Any]


def _popen(args: Sequence[str]) -> subprocess.Popen[bytes]:
    return subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)


class EphemeralAuthTabLauncher(ExternalAgentLauncher):
    """Presents requests in an isolated app-mode browser window.

    Outcomes:
    - SUCCESS: the receiver caught the redirect.
    - MALFORMED_RESPONSE: the redirect carried no OAuth parameters.
    - CANCELLED: the window was closed before the redirect arrived.
    - VERIFICATION_FAILED: the redirect URI cannot be claimed by the receiver.
    - VERIFICATION_TIMED_OUT: the receiver did not come up in time.
    """

    mode = PresentationMode.EPHEMERAL_AUTH_TAB

    def __init__(
        self,
        receiver: CallbackReceiver,
        browser: AuthTabBrowser | None = None,
        probe: BrowserCapabilityProbe | None = None,
        ready_timeout: float = 10.0,
        process_factory: ProcessFactory = _popen,
    ) -> None:
        self.receiver = receiver
        self.browser = browser
        self.probe = probe or BrowserCapabilityProbe()
        self.ready_timeout = ready_timeout
        self.process_factory = process_factory

    def prepare(self) -> None:
        if self.browser is None:
            self.browser = self.probe.auth_tab_browser()
        if not self.receiver.start(self.ready_timeout):
            logger.warning("Callback receiver did not come up during warm-up")

    def _present(self, request: RequestDescriptor, deliver: ResultHandler) -> None:
        if not self.receiver.serves(request.redirect_uri):
            deliver(
                AgentResult.failure(
                    AgentOutcome.VERIFICATION_FAILED,
                    f"Redirect URI {request.redirect_uri} cannot be claimed by the local receiver",
                )
            )
            return

        if not self.receiver.start(self.ready_timeout):
            deliver(AgentResult.failure(AgentOutcome.VERIFICATION_TIMED_OUT, "Callback receiver did not start"))
            return

        browser = self.browser or self.probe.auth_tab_browser()
        if browser is None:
            deliver(AgentResult.failure(AgentOutcome.LAUNCH_FAILED, "No supported auth tab browser installed"))
            return

        profile_dir = tempfile.mkdtemp(prefix="eidflow-authtab-")
        finish_lock = threading.Lock()
        finished = threading.Event()
        process: Any = None

        def finish(result: AgentResult) -> None:
            with finish_lock:
                if finished.is_set():
                    return
                finished.set()
            deliver(result)
            if process is not None and process.poll() is None:
                process.terminate()

        def on_callback(callback_uri: str) -> None:
            finish(classify_callback(callback_uri))

        self.receiver.expect(on_callback)
        try:
            process = self.process_factory(
                [
                    browser.executable,
                    f"--app={request.uri}",
                    f"--user-data-dir={profile_dir}",
                    "--no-first-run",
                    "--no-default-browser-check",
                    "--disable-extensions",
                ]
            )
        except OSError:
            self.receiver.clear(on_callback)
            shutil.rmtree(profile_dir, ignore_errors=True)
            raise

        def watch() -> None:
            process.wait()
            self.receiver.clear(on_callback)
            finish(AgentResult.failure(AgentOutcome.CANCELLED, "Browser window closed"))
            shutil.rmtree(profile_dir, ignore_errors=True)

        threading.Thread(target=watch, name="eidflow-authtab-watch", daemon=True).start()

    def close(self) -> None:
        self.receiver.stop()
