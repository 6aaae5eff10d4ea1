"""Loopback listener that claims redirect URIs for the launchers.

The receiver serves the redirect path(s) and the app-switch path on the
host and port of the configured redirect URI. A launcher registers a
handler with :meth:`CallbackReceiver.expect` before presenting a URI; the
next redirect hit is passed to that handler.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from urllib.parse import urlparse

import httpx
from werkzeug.serving import BaseWSGIServer, make_server

from eidflow.core.appswitch import AppSwitchResume

logger = logging.getLogger(__name__)

CallbackHandler = Callable[[str], None]


def _origin(uri: str) -> tuple[str, int]:
    parsed = urlparse(uri)
    default_port = 443 if parsed.scheme == "https" else 80
    return (parsed.hostname or "", parsed.port or default_port)


class CallbackReceiver:
    """Serves the redirect and app-switch URIs on a loopback socket."""

    def __init__(
        self,
        redirect_uris: Iterable[str],
        app_switch_uri: str,
        app_switch: AppSwitchResume | None = None,
    ) -> None:
        """Initialize the receiver.

        Args:
            redirect_uris: Redirect URIs to claim (login and post-logout).
            app_switch_uri: URI the identity app reopens after approval.
            app_switch: Resume contract invoked on app-switch hits.
        """
        uris = list(dict.fromkeys(redirect_uris))
        if not uris:
            raise ValueError("At least one redirect URI is required")

        self.host, self.port = _origin(uris[0])
        self.redirect_uris = uris
        self.callback_paths = list(dict.fromkeys(urlparse(uri).path or "/" for uri in uris))
        self.app_switch_path = urlparse(app_switch_uri).path or "/"
        self.app_switch_serveable = _origin(app_switch_uri) == (self.host, self.port)
        self.app_switch = app_switch or AppSwitchResume()

        if self.app_switch_path in self.callback_paths:
            raise ValueError(f"App-switch path {self.app_switch_path} collides with a redirect path")

        self._lock = threading.Lock()
        self._handler: CallbackHandler | None = None
        self._server: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def serves(self, uri: str) -> bool:
        """Whether a redirect to ``uri`` would reach this receiver."""
        parsed = urlparse(uri)
        return (
            parsed.scheme == "http"
            and _origin(uri) == (self.host, self.port)
            and (parsed.path or "/") in self.callback_paths
        )

    def expect(self, handler: CallbackHandler) -> None:
        """Route the next redirect hit to ``handler``, replacing any previous one."""
        with self._lock:
            self._handler = handler

    def clear(self, handler: CallbackHandler | None = None) -> None:
        """Stop routing redirects; with ``handler``, only if it is still the active one."""
        with self._lock:
            if handler is None or self._handler is handler:
                self._handler = None

    def handle_callback(self, url: str) -> bool:
        """Hand a redirect hit to the active handler.

        Returns:
            True if a handler took it, False if nothing was waiting.
        """
        with self._lock:
            handler, self._handler = self._handler, None
        if handler is None:
            logger.warning("Got a callback, but no launch is waiting for one")
            return False
        handler(url)
        return True

    def start(self, ready_timeout: float = 10.0) -> bool:
        """Start serving on a daemon thread and wait until it answers.

        Returns:
            True once the listener responds to its health probe, False on timeout.
        """
        if self._server is None:
            from eidflow.app import create_app

            try:
                self._server = make_server(self.host, self.port, create_app(self), threaded=True)
            except SystemExit as e:
                # werkzeug exits instead of raising when the port is taken
                raise OSError(f"Cannot listen on {self.host}:{self.port}") from e
            self._thread = threading.Thread(target=self._server.serve_forever, name="eidflow-receiver", daemon=True)
            self._thread.start()
            logger.info(f"Callback receiver listening on http://{self.host}:{self.port}")
        return self.wait_ready(ready_timeout)

    def wait_ready(self, timeout: float) -> bool:
        """Probe the health route until it answers or ``timeout`` elapses."""
        if self._server is None:
            return False
        try:
            response = httpx.get(f"http://{self.host}:{self.port}/health", timeout=timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Callback receiver not ready: {e}")
            return False
        return response.status_code == 200

    def stop(self) -> None:
        """Shut the listener down."""
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
            logger.info("Callback receiver stopped")
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
