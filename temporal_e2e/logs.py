"""Structured logging for the e2e harness.

The harness logs through structlog. ``configure_logging`` installs a
pipeline suited to CI output; tests that never call it get structlog's
default console logging, which pytest captures per test.

Port-forward transports write human-readable progress lines to a *log sink*
(any object with ``write(str)``). ``StructlogSink`` is the default sink and
turns each line into a structured log event tagged with the tunnel target.

Example:
    >>> configure_logging(log_level="DEBUG", json_output=False)
    >>> sink = StructlogSink(target="e2e/test-frontend-0:7233")
    >>> sink.write("Forwarding from 127.0.0.1:50123 -> 7233\\n")
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import structlog


class LogSink(Protocol):
    """Destination for transport progress and error lines."""

    def write(self, message: str) -> Any: ...


class StructlogSink:
    """Log sink that emits every written line as a structlog event.

    Attributes:
        target: Tunnel target bound to every event.
    """

    def __init__(self, target: str, logger: Any = None) -> None:
        self.target = target
        self._log = (logger or structlog.get_logger("temporal_e2e.tunnel")).bind(target=target)

    def write(self, message: str) -> int:
        for line in message.splitlines():
            if line.strip():
                self._log.info("port_forward", message=line.strip())
        return len(message)


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structlog for harness output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, output logs as JSON. If False, use console format.

    Raises:
        ValueError: If log_level is not a known level name.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        msg = f"Unknown log level: {log_level}"
        raise ValueError(msg)

    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "LogSink",
    "StructlogSink",
    "configure_logging",
]
