"""App-switch resume handling.

When the user approves in a third-party identity app (MitID, BankID), the
app reopens the app-switch URI without any OAuth parameters. Its only job
is to hand control back to this process; the authorization still
completes in the browser, which delivers its own callback independently.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AppSwitchResume:
    """Records that control returned from an identity app.

    Never reads request data and never touches the login flow.
    """

    def __init__(self) -> None:
        self._resumed = threading.Event()
        self._lock = threading.Lock()
        self._count = 0
        self._listeners: list[Callable[[], None]] = []

    @property
    def resume_count(self) -> int:
        return self._count

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` (with no arguments) on every resume."""
        self._listeners.append(listener)

    def on_resume(self) -> None:
        with self._lock:
            self._count += 1
        self._resumed.set()
        logger.info("Control returned from identity app; waiting for the browser to finish")
        for listener in list(self._listeners):
            listener()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a resume has been seen. Returns False on timeout."""
        return self._resumed.wait(timeout)
