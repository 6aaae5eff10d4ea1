"""External agent launchers."""

from eidflow.core.launcher.auth_tab import EphemeralAuthTabLauncher
from eidflow.core.launcher.base import (
    AgentOutcome,
    AgentResult,
    ExternalAgentLauncher,
    PresentationMode,
    classify_callback,
)
from eidflow.core.launcher.browser_tab import GeneralBrowserTabLauncher
from eidflow.core.launcher.capabilities import (
    AuthTabBrowser,
    BrowserCapabilityProbe,
    select_presentation_mode,
)

__all__ = [
    "AgentOutcome",
    "AgentResult",
    "AuthTabBrowser",
    "BrowserCapabilityProbe",
    "EphemeralAuthTabLauncher",
    "ExternalAgentLauncher",
    "GeneralBrowserTabLauncher",
    "PresentationMode",
    "classify_callback",
    "select_presentation_mode",
]
