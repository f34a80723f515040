"""Structured logging setup: structlog JSON lines with secret redaction.

Hook commands speak their protocol on stdout, so log events never go there.
They are appended to the state directory log file, or to stderr when no
writable log file is available.
"""

from __future__ import annotations

import atexit
import logging
import re
import sys
import threading
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import IO, Any, Final

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LEVEL: Final[str] = "INFO"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "client_secret",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_OPENAI_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-[A-Za-z0-9]{12,}\b")
_ANTHROPIC_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-ant-[A-Za-z0-9_-]{12,}\b")

_SINK_LOCK = threading.Lock()
_ACTIVE_SINK: IO[str] | None = None
_ATEXIT_REGISTERED = False


def configure_logging(
    log_path: str | Path | None,
    *,
    level: str | int = _DEFAULT_LEVEL,
    redact: bool = True,
) -> Path | None:
    """Route every structlog logger to a JSON-lines sink.

    Returns the log file path in use, or ``None`` when events go to stderr.
    """

    numeric_level = _parse_log_level(level)
    sink, resolved_path = _open_sink(log_path)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if redact:
        processors.append(redact_event)
    processors.append(structlog.processors.JSONRenderer(sort_keys=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.WriteLoggerFactory(file=sink),
        cache_logger_on_first_use=False,
    )
    return resolved_path


def shutdown_logging() -> None:
    """Close the active file sink, if one is open."""

    global _ACTIVE_SINK
    with _SINK_LOCK:
        sink = _ACTIVE_SINK
        _ACTIVE_SINK = None
    if sink is not None and sink is not sys.stderr:
        sink.flush()
        sink.close()


def bind_hook_context(**fields: object) -> None:
    """Bind per-invocation fields (hook name, iteration) to every later event."""

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)


def redact_event(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor applying deep key and value redaction."""

    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_text(text: str) -> str:
    """Mask credential-shaped substrings in free text."""

    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", text)
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", redacted
    )
    redacted = _ANTHROPIC_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)
    redacted = _OPENAI_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)
    return redacted


def _open_sink(log_path: str | Path | None) -> tuple[IO[str], Path | None]:
    global _ACTIVE_SINK
    shutdown_logging()

    if log_path is None:
        return sys.stderr, None

    target = Path(log_path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handle: IO[str] = target.open("a", encoding="utf-8")
    except OSError:
        return sys.stderr, None

    with _SINK_LOCK:
        _ACTIVE_SINK = handle
    _register_atexit_shutdown()
    return handle, target


def _register_atexit_shutdown() -> None:
    global _ATEXIT_REGISTERED
    if _ATEXIT_REGISTERED:
        return
    atexit.register(shutdown_logging)
    _ATEXIT_REGISTERED = True


def _parse_log_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _redact_value(item, key_context=str(key)) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


__all__ = [
    "bind_hook_context",
    "configure_logging",
    "redact_event",
    "redact_text",
    "shutdown_logging",
]
