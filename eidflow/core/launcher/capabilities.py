"""Installed-browser capability probing.

Decides, once per session, whether an ephemeral auth tab can be used or
the launcher has to fall back to a general browser tab.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import webbrowser
from collections.abc import Sequence
from dataclasses import dataclass

from eidflow.core.launcher.base import PresentationMode

logger = logging.getLogger(__name__)

# Oldest Chromium major version with app-mode windows and isolated profiles that behave
MIN_AUTH_TAB_VERSION = 120

# Chromium-family executables, most preferred first
AUTH_TAB_EXECUTABLES = (
    "google-chrome",
    "google-chrome-stable",
    "chrome",
    "chromium",
    "chromium-browser",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)

_VERSION_PATTERN = re.compile(r"(\d+)\.\d+")


@dataclass(frozen=True)
class AuthTabBrowser:
    """A browser executable able to host an ephemeral auth tab."""

    executable: str
    major_version: int


class BrowserCapabilityProbe:
    """Finds installed browsers. Replace or subclass to change detection."""

    def __init__(
        self,
        auth_tab_candidates: Sequence[str] = AUTH_TAB_EXECUTABLES,
        min_version: int = MIN_AUTH_TAB_VERSION,
    ) -> None:
        self.auth_tab_candidates = auth_tab_candidates
        self.min_version = min_version

    def auth_tab_browser(self) -> AuthTabBrowser | None:
        """Return the first sufficiently current Chromium-family browser, if any."""
        for candidate in self.auth_tab_candidates:
            executable = shutil.which(candidate)
            if executable is None:
                continue
            version = self._major_version(executable)
            if version is None:
                continue
            if version >= self.min_version:
                return AuthTabBrowser(executable=executable, major_version=version)
            logger.debug(f"{executable} is version {version}, need {self.min_version}+ for auth tabs")
        return None

    def installed_browsers(self, preferred: Sequence[str]) -> list[str]:
        """Names from ``preferred`` that :mod:`webbrowser` can drive, in order."""
        found = []
        for name in preferred:
            try:
                webbrowser.get(name)
            except webbrowser.Error:
                continue
            found.append(name)
        return found

    def _major_version(self, executable: str) -> int | None:
        try:
            completed = subprocess.run(
                [executable, "--version"],
                capture_output=True,
                text=True,
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Could not query {executable} version: {e}")
            return None
        match = _VERSION_PATTERN.search(completed.stdout)
        return int(match.group(1)) if match else None


def select_presentation_mode(probe: BrowserCapabilityProbe, prefer_auth_tab: bool = True) -> PresentationMode:
    """Resolve the presentation mode once, falling back to a general browser tab."""
    supported = probe.auth_tab_browser() is not None
    logger.info(f"Auth tab: enabled {prefer_auth_tab} supported {supported}")
    if prefer_auth_tab and supported:
        return PresentationMode.EPHEMERAL_AUTH_TAB
    return PresentationMode.GENERAL_BROWSER_TAB
