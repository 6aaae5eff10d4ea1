"""Flask application factory for the loopback callback receiver."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from eidflow.web.receiver import CallbackReceiver


def create_app(receiver: CallbackReceiver, config: dict | None = None) -> Flask:
    """Create the Flask application serving the receiver's routes.

    Args:
        receiver: Receiver whose callback and app-switch paths are served.
        config: Optional configuration dictionary to override defaults.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(JSON_SORT_KEYS=False)
    if config:
        app.config.from_mapping(config)

    from eidflow.web import routes

    routes.init_app(app, receiver)

    return app
