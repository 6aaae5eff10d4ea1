"""Loopback routes for the redirect callback and the app-switch link."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Blueprint, Flask, current_app, request

if TYPE_CHECKING:
    from eidflow.web.receiver import CallbackReceiver

RECEIVER_EXTENSION = "eidflow.receiver"

receiver_bp = Blueprint("receiver", __name__)

_PAGE = "<!doctype html><html><head><title>eidflow</title></head><body><h2>{}</h2></body></html>"


def _receiver() -> CallbackReceiver:
    receiver: CallbackReceiver = current_app.extensions[RECEIVER_EXTENSION]
    return receiver


@receiver_bp.route("/health")
def health() -> dict[str, str]:
    """Readiness probe used while waiting for the listener to come up."""
    return {"status": "ready"}


def callback() -> tuple[str, int]:
    """Receive the browser redirect and hand its full URI to the active launch."""
    if _receiver().handle_callback(request.url):
        return _PAGE.format("Done. You can close this window and return to the application."), 200
    return _PAGE.format("No login or logout is waiting for this response."), 404


def app_switch() -> tuple[str, int]:
    """Receive the app-switch link. Query parameters are ignored."""
    _receiver().app_switch.on_resume()
    return _PAGE.format("Return to your browser to finish."), 200


def init_app(app: Flask, receiver: CallbackReceiver) -> None:
    """Register the receiver routes on the Flask app."""
    app.extensions[RECEIVER_EXTENSION] = receiver
    app.register_blueprint(receiver_bp)
    for index, path in enumerate(receiver.callback_paths):
        app.add_url_rule(path, endpoint=f"callback_{index}", view_func=callback)
    app.add_url_rule(receiver.app_switch_path, endpoint="app_switch", view_func=app_switch)
