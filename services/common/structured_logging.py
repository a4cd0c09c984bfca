"""Centralized logging utilities for the voice chat services."""

from __future__ import annotations

import logging
import sys
import threading
import time
from collections.abc import Callable
from typing import IO, Any

import structlog


_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Third-party loggers that are chatty at DEBUG/INFO during voice sessions.
_QUIET_LOGGERS: dict[str, int] = {
    "httpcore": logging.WARNING,
    "httpx": logging.WARNING,
    "discord.client": logging.INFO,
    "discord.gateway": logging.INFO,
    "discord.http": logging.WARNING,
    "discord.player": logging.WARNING,
    "discord.voice": logging.WARNING,
    "discord.voice_client": logging.WARNING,
    "discord.voice_state": logging.WARNING,
    "discord.ext.voice_recv": logging.WARNING,
    "discord.ext.voice_recv.reader": logging.WARNING,
    "discord.ext.voice_recv.router": logging.WARNING,
    "discord.ext.voice_recv.sinks": logging.WARNING,
}


def _numeric_level(level: str) -> int:
    name = (level or "").upper()
    return _LEVELS.get(name, logging.INFO)


Processor = Callable[[Any, str, dict[str, Any]], dict[str, Any]]


def _add_service(service_name: str | None) -> Processor:
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if service_name and "service" not in event_dict:
            event_dict["service"] = service_name
        return event_dict

    return processor


def configure_logging(
    level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str | None = None,
    stream: IO[str] | None = None,
    full_tracebacks: bool | None = None,
) -> None:
    """Route structlog and stdlib records through one handler.

    ``stream`` defaults to stdout. Tracebacks are rendered as structured
    dicts when ``full_tracebacks`` is set, which defaults to on at DEBUG.
    """
    numeric_level = _numeric_level(level)
    output_stream = stream if stream is not None else sys.stdout
    if full_tracebacks is None:
        full_tracebacks = numeric_level <= logging.DEBUG

    exception_processor = (
        structlog.processors.dict_tracebacks
        if full_tracebacks
        else structlog.processors.format_exc_info
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _add_service(service_name),
        exception_processor,
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    handler = logging.StreamHandler(output_stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)
    logging.captureWarnings(True)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(quiet_level, numeric_level))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(
    name: str,
    *,
    correlation_id: str | None = None,
    service_name: str | None = None,
) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound with standard metadata."""

    logger = structlog.stdlib.get_logger(name)
    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)
    if service_name:
        logger = logger.bind(service=service_name)
    return logger


def bind_correlation_id(
    logger: structlog.stdlib.BoundLogger,
    correlation_id: str | None,
) -> structlog.stdlib.BoundLogger:
    """Return ``logger`` bound to ``correlation_id``, or unchanged when it is empty."""
    if not correlation_id:
        return logger
    return logger.bind(correlation_id=correlation_id)


# Sampling and rate limiting for high-frequency events; packet callbacks
# call these from the voice receive thread.
_SAMPLE_LOCK = threading.Lock()
_SAMPLE_COUNTERS: dict[str, int] = {}
_RATE_LIMIT_LOCK = threading.Lock()
_RATE_LIMIT_LAST: dict[str, float] = {}


def should_sample(key: str, every_n: int) -> bool:
    """Return True when the keyed event should be logged based on N sampling."""
    if every_n <= 1:
        return True
    with _SAMPLE_LOCK:
        count = _SAMPLE_COUNTERS.get(key, 0) + 1
        _SAMPLE_COUNTERS[key] = count
        return count % every_n == 0


def should_rate_limit(key: str, interval_s: float) -> bool:
    """Return True if enough time elapsed since the last emission for this key.

    Thread-safe, uses wall-clock seconds.
    """
    if interval_s <= 0:
        return True
    now = time.time()
    with _RATE_LIMIT_LOCK:
        last = _RATE_LIMIT_LAST.get(key)
        if last is None or (now - last) >= interval_s:
            _RATE_LIMIT_LAST[key] = now
            return True
        return False


__all__ = [
    "bind_correlation_id",
    "configure_logging",
    "get_logger",
    "should_rate_limit",
    "should_sample",
]
