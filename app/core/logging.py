"""Logging configuration for the access-code service.

Two output shapes share one root handler on stdout:

  _ContainerFormatter: single human-readable line per record, for local
    runs and `docker logs`.  WARNING and above get a [file:line] suffix
    so a denial can be traced back to the guard that raised it.

  _JsonFormatter: one JSON object per line (LOG_JSON=true).  Request
    context set by RequestContextMiddleware and credential context set
    by the lifecycle engine (credential_id, outcome) become top-level
    keys, so "every DeviceMismatch for credential X" is a simple filter
    in the log aggregator.

Access codes and device fingerprints are secrets of a kind: callers log
mask_code(code) and never the raw fingerprint.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout."""

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON-lines formatter.  Context fields are lifted to top-level keys."""

    _CONTEXT_FIELDS = (
        "request_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "credential_id",
        "outcome",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            # "-" is the request-id filter's placeholder outside a request
            if value is not None and value != "-":
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def mask_code(code: str) -> str:
    """Keep the prefix and first group of an access code, star out the rest.

    >>> mask_code("ACE-WXYZ-23AB-CD45")
    'ACE-WXYZ-****-****'
    """
    parts = code.split("-")
    if len(parts) < 3:
        return "*" * len(code)
    return "-".join(parts[:2] + ["*" * len(p) for p in parts[2:]])


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger: one stdout handler, chosen formatter.

    Unknown level names fall back to INFO.  Third-party loggers are held
    at WARNING or above so DEBUG runs stay readable.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
