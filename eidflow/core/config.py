"""Login flow configuration.

Loads configuration from a config.yaml file and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".eidflow"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

ENV_PREFIX = "EIDFLOW_"

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8765/callback"
DEFAULT_APP_SWITCH_URI = "http://127.0.0.1:8765/appswitch"


@dataclass
class PresentationSettings:
    """How the authorization URI is shown to the user."""

    prefer_auth_tab: bool = True
    preferred_browsers: list[str] = field(default_factory=lambda: ["chrome", "chromium", "firefox"])
    agent_ready_timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PresentationSettings:
        """Create PresentationSettings from a dictionary."""
        defaults = cls()
        return cls(
            prefer_auth_tab=data.get("prefer_auth_tab", defaults.prefer_auth_tab),
            preferred_browsers=list(data.get("preferred_browsers", defaults.preferred_browsers)),
            agent_ready_timeout=float(data.get("agent_ready_timeout", defaults.agent_ready_timeout)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "prefer_auth_tab": self.prefer_auth_tab,
            "preferred_browsers": list(self.preferred_browsers),
            "agent_ready_timeout": self.agent_ready_timeout,
        }


@dataclass
class FlowConfig:
    """Configuration for one login session against an issuer."""

    domain: str = ""
    client_id: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI
    app_switch_uri: str = DEFAULT_APP_SWITCH_URI
    post_logout_redirect_uri: str | None = None
    app_switch_platform: str = "android"
    verify_audience: bool = True
    http_timeout: float = 30.0
    callback_timeout: float | None = None
    presentation: PresentationSettings = field(default_factory=PresentationSettings)
    config_path: Path | None = None

    @property
    def issuer(self) -> str:
        """Expected issuer: the domain without a trailing slash."""
        return self.domain.rstrip("/")

    @property
    def logout_redirect_uri(self) -> str:
        return self.post_logout_redirect_uri or self.redirect_uri

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> FlowConfig:
        """Create FlowConfig from a dictionary."""
        defaults = cls()
        timeout = data.get("callback_timeout")
        return cls(
            domain=data.get("domain", ""),
            client_id=data.get("client_id", ""),
            redirect_uri=data.get("redirect_uri", defaults.redirect_uri),
            app_switch_uri=data.get("app_switch_uri", defaults.app_switch_uri),
            post_logout_redirect_uri=data.get("post_logout_redirect_uri"),
            app_switch_platform=data.get("app_switch_platform", defaults.app_switch_platform),
            verify_audience=data.get("verify_audience", defaults.verify_audience),
            http_timeout=float(data.get("http_timeout", defaults.http_timeout)),
            callback_timeout=float(timeout) if timeout is not None else None,
            presentation=PresentationSettings.from_dict(data.get("presentation") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "domain": self.domain,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "app_switch_uri": self.app_switch_uri,
            "post_logout_redirect_uri": self.post_logout_redirect_uri,
            "app_switch_platform": self.app_switch_platform,
            "verify_audience": self.verify_audience,
            "http_timeout": self.http_timeout,
            "callback_timeout": self.callback_timeout,
            "presentation": self.presentation.to_dict(),
        }

    def validate(self) -> list[str]:
        """Check the configuration for problems.

        Returns:
            A list of human-readable error strings. Empty if valid.
        """
        errors: list[str] = []
        if not self.domain:
            errors.append("'domain' is required")
        elif urlparse(self.domain).scheme != "https":
            errors.append(f"'domain' must be an https origin, got {self.domain}")
        if not self.client_id:
            errors.append("'client_id' is required")
        for name in ("redirect_uri", "app_switch_uri"):
            parsed = urlparse(getattr(self, name))
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                errors.append(f"'{name}' must be an absolute http(s) URI")
        if self.callback_timeout is not None and self.callback_timeout <= 0:
            errors.append("'callback_timeout' must be positive when set")
        return errors

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_float(key: str, default: float | None) -> float | None:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={value!r}")
        return default


def load_config(config_path: Path | None = None) -> FlowConfig:
    """Load login flow configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        FlowConfig with merged settings.
    """
    config = FlowConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = FlowConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring invalid config file {file_path}: {e}")

    for name in ("domain", "client_id", "redirect_uri", "app_switch_uri", "post_logout_redirect_uri", "app_switch_platform"):
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            setattr(config, name, value)

    config.verify_audience = _get_env_bool(f"{ENV_PREFIX}VERIFY_AUDIENCE", config.verify_audience)
    config.http_timeout = _get_env_float(f"{ENV_PREFIX}HTTP_TIMEOUT", config.http_timeout) or config.http_timeout
    config.callback_timeout = _get_env_float(f"{ENV_PREFIX}CALLBACK_TIMEOUT", config.callback_timeout)
    config.presentation.prefer_auth_tab = _get_env_bool(
        f"{ENV_PREFIX}PREFER_AUTH_TAB", config.presentation.prefer_auth_tab
    )

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return f"""\
# eidflow configuration file
# Environment variables override these settings (prefix: {ENV_PREFIX})

# Your e-ID broker domain (the token issuer). Must be https.
domain: "https://example.criipto.id"

# OAuth2 client ID of your (public) application
client_id: "urn:my:application:identifier"

# Where the browser is sent after login. eidflow listens on this host/port.
redirect_uri: "{DEFAULT_REDIRECT_URI}"

# Link the identity app (MitID, BankID) reopens after approval
app_switch_uri: "{DEFAULT_APP_SWITCH_URI}"

# Where the browser is sent after logout (defaults to redirect_uri)
# post_logout_redirect_uri: "{DEFAULT_REDIRECT_URI}"

# Platform announced in the appswitch login hint
app_switch_platform: "android"

# Check the ID token audience against client_id
verify_audience: true

# Seconds to wait for HTTP calls to the provider
http_timeout: 30

# Seconds to wait for the browser callback. Unset waits forever.
# callback_timeout: 600

presentation:
  # Use an ephemeral app-mode browser window when a supported browser is installed
  prefer_auth_tab: true

  # Browsers tried, in order, before the system default
  preferred_browsers: ["chrome", "chromium", "firefox"]

  # Seconds the callback listener may take to come up
  agent_ready_timeout: 10
"""
