"""General browser tab launcher.

Opens the request URI in a new tab of a regular browser. The redirect is
claimed by the loopback receiver, which must already be listening when
the browser reaches it, so :meth:`GeneralBrowserTabLauncher.prepare`
starts it ahead of the first launch.
"""

from __future__ import annotations

import logging
import webbrowser
from collections.abc import Sequence
from typing import TYPE_CHECKING

from eidflow.core.launcher.base import (
    AgentOutcome,
    AgentResult,
    ExternalAgentLauncher,
    PresentationMode,
    ResultHandler,
    classify_callback,
)
from eidflow.core.launcher.capabilities import BrowserCapabilityProbe
from eidflow.web.receiver import CallbackReceiver

if TYPE_CHECKING:
    from eidflow.core.oidc.client import RequestDescriptor

logger = logging.getLogger(__name__)


class GeneralBrowserTabLauncher(ExternalAgentLauncher):
    """Presents requests in a tab of a known-compatible or the default browser."""

    mode = PresentationMode.GENERAL_BROWSER_TAB

    def __init__(
        self,
        receiver: CallbackReceiver,
        preferred_browsers: Sequence[str] = (),
        probe: BrowserCapabilityProbe | None = None,
        ready_timeout: float = 10.0,
    ) -> None:
        self.receiver = receiver
        self.preferred_browsers = list(preferred_browsers)
        self.probe = probe or BrowserCapabilityProbe()
        self.ready_timeout = ready_timeout
        self._browser: webbrowser.BaseBrowser | None = None

    def prepare(self) -> None:
        """Start the receiver and pick the browser before any launch."""
        if not self.receiver.start(self.ready_timeout):
            logger.warning("Callback receiver did not come up during warm-up")
        try:
            self._browser = self._select_browser()
        except webbrowser.Error as e:
            logger.warning(f"No usable browser found: {e}")

    def _select_browser(self) -> webbrowser.BaseBrowser:
        installed = self.probe.installed_browsers(self.preferred_browsers)
        if installed:
            logger.info(f"Using browser {installed[0]}")
            return webbrowser.get(installed[0])
        logger.info("No preferred browser found, using the system default")
        return webbrowser.get()

    def _present(self, request: RequestDescriptor, deliver: ResultHandler) -> None:
        if not self.receiver.serves(request.redirect_uri):
            deliver(
                AgentResult.failure(
                    AgentOutcome.VERIFICATION_FAILED,
                    f"Redirect URI {request.redirect_uri} cannot be claimed by the local receiver",
                )
            )
            return

        if not self.receiver.is_running and not self.receiver.start(self.ready_timeout):
            deliver(AgentResult.failure(AgentOutcome.VERIFICATION_TIMED_OUT, "Callback receiver did not start"))
            return

        if self._browser is None:
            self._browser = self._select_browser()

        def on_callback(callback_uri: str) -> None:
            deliver(classify_callback(callback_uri))

        self.receiver.expect(on_callback)
        if not self._browser.open(request.uri, new=2):
            self.receiver.clear(on_callback)
            deliver(AgentResult.failure(AgentOutcome.LAUNCH_FAILED, "Browser refused to open the URI"))

    def close(self) -> None:
        self.receiver.stop()
