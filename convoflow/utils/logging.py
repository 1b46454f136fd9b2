"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys

import structlog

_SECRET_PATTERNS = [
    (
        re.compile(r"(token|key|secret|password|authorization)[\"']?\s*[:=]\s*[\"']?[\w\-\.]+", re.IGNORECASE),
        r"\1=***REDACTED***",
    ),
    (
        re.compile(r"(hooks\.slack\.com/services/)[\w/]+", re.IGNORECASE),
        r"\1***REDACTED***",
    ),
]

_EMAIL = re.compile(r"\b([\w.+-])[\w.+-]*@([\w-]+(?:\.[\w-]+)+)\b")

_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "aiohttp.access")


def _scrub(value: str, mask_emails: bool) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        value = pattern.sub(replacement, value)
    if mask_emails:
        value = _EMAIL.sub(r"\1***@\2", value)
    return value


def _redactor(mask_emails: bool) -> structlog.types.Processor:
    """Scrub secrets, and attendee addresses unless ``mask_emails`` is off."""

    def redact(
        _logger: structlog.types.WrappedLogger,
        _method: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        for key, value in event_dict.items():
            if isinstance(value, str):
                event_dict[key] = _scrub(value, mask_emails)
            elif isinstance(value, list):
                event_dict[key] = [
                    _scrub(v, mask_emails) if isinstance(v, str) else v for v in value
                ]
        return event_dict

    return redact


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog through stdlib logging on stderr.

    Email addresses are masked except at DEBUG, where full workflow context is
    wanted for troubleshooting.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    debug = numeric_level <= logging.DEBUG
    if debug:
        print(
            "WARNING: DEBUG logging is enabled. Workflow context, including "
            "attendee addresses, will appear in logs.",
            file=sys.stderr,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            _redactor(mask_emails=not debug),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
