"""Protocol logging for the login flow.

Captures every HTTP exchange made against the identity provider (metadata,
key set, token exchange) and writes it to the ``eidflow.protocol`` logger,
redacting authorization codes, PKCE verifiers and tokens unless TRACE
logging has been explicitly enabled.

Log levels:
- ERROR: Only log errors
- INFO: Log request lines and status codes
- DEBUG: Add headers and timing
- TRACE: Add full bodies, including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("eidflow.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE


_QUERY_SECRETS = ("code", "code_verifier", "access_token", "id_token", "id_token_hint", "refresh_token")
_JSON_SECRETS = ("access_token", "id_token", "refresh_token", "code_verifier")

SENSITIVE_PATTERNS = [
    *[(re.compile(rf"(\b{name}=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]") for name in _QUERY_SECRETS],
    *[(re.compile(rf'"({name})"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"') for name in _JSON_SECRETS],
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
]


def redact_sensitive(text: str) -> str:
    """Redact codes, verifiers and tokens from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange with the identity provider."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary, redacting secrets unless asked not to."""

        def process(value: str | None) -> str | None:
            if value is None or include_sensitive:
                return value
            return redact_sensitive(value)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": {k: process(v) for k, v in self.request_headers.items()},
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging at the given level."""
        data = self.to_dict(include_sensitive)
        lines = [f"HTTP {self.method} {data['url']} -> {self.response_status or 'ERROR'}"]

        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            if self.duration_ms is not None:
                lines.append(f"  Duration: {self.duration_ms:.1f}ms")
            lines.append("  Request Headers:")
            for name, value in data["request_headers"].items():
                lines.append(f"    {name}: {value}")

        if level <= LogLevel.TRACE:
            for label, body in (("Request Body", data["request_body"]), ("Response Body", data["response_body"])):
                if body:
                    lines.append(f"  {label}:")
                    lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Exchanges collected for one login or logout request."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def complete(self) -> None:
        """Mark the log as complete."""
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
        }


class ProtocolLogger:
    """Level-aware sink for HTTP exchanges.

    Exchanges are written to the ``eidflow.protocol`` logger and, while a
    flow is active, collected into its :class:`ProtocolLog`.
    """

    def __init__(self, level: LogLevel = LogLevel.INFO, trace_enabled: bool = False) -> None:
        self.level = level
        self.trace_enabled = trace_enabled
        self._current_log: ProtocolLog | None = None

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self.level == LogLevel.TRACE and not self.trace_enabled:
            return LogLevel.DEBUG
        return self.level

    @property
    def current_log(self) -> ProtocolLog | None:
        return self._current_log

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start collecting exchanges for a flow."""
        self._current_log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        logger.info(f"Started protocol logging for {flow_type}: {flow_id}")
        return self._current_log

    def end_flow(self) -> ProtocolLog | None:
        """Stop collecting and return the completed log, if any."""
        log = self._current_log
        if log is None:
            return None
        log.complete()
        self._current_log = None
        logger.info(f"Completed protocol logging for {log.flow_type}: {log.flow_id} ({len(log.exchanges)} exchanges)")
        return log

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Record an HTTP exchange."""
        if self._current_log:
            self._current_log.exchanges.append(exchange)

        effective = self.effective_level
        include_sensitive = self.trace_enabled and self.level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}")


class LoggingClient(httpx.Client):
    """HTTPX client that reports every exchange to a :class:`ProtocolLogger`."""

    def __init__(self, protocol_logger: ProtocolLogger | None = None, **kwargs: Any) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Uses the global one if not provided.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._exchange_counter = 0
        self._counter_lock = threading.Lock()
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def send(self, request: httpx.Request, **kwargs: Any) -> httpx.Response:
        """Send a request, logging the exchange whether it succeeds or not."""
        with self._counter_lock:
            self._exchange_counter += 1
            exchange_id = f"http_{self._exchange_counter:04d}"
        start_time = time.perf_counter()

        request_body = None
        if request.content:
            try:
                request_body = request.content.decode("utf-8")
            except UnicodeDecodeError:
                request_body = "<binary content>"

        exchange = HTTPExchange(
            id=exchange_id,
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=request_body,
        )

        try:
            response = super().send(request, **kwargs)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e)
            self._protocol_logger.log_exchange(exchange)
            raise

        response.read()
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_body = response.text
        self._protocol_logger.log_exchange(exchange)
        return response


_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure console (and optional file) logging for the ``eidflow`` loggers.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger, also installed as the global one.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    root = logging.getLogger("eidflow")
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - authorization codes and tokens will be logged!")

    return protocol_logger
