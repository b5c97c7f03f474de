"""JSON log output.  The aggregator filters on these keys, so a format
regression would silently break "all denials for credential X" queries.
"""

from __future__ import annotations

import json
import logging

from app.core.logging import _ContainerFormatter, _JsonFormatter


def test_json_formatter_produces_valid_json() -> None:
    """_JsonFormatter output must be parseable as JSON."""
    formatter = _JsonFormatter()
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=42,
        msg="Hello %s",
        args=("world",),
        exc_info=None,
    )
    output = formatter.format(record)
    parsed = json.loads(output)
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "test.logger"
    assert parsed["message"] == "Hello world"
    assert "timestamp" in parsed


def test_json_formatter_includes_extra_fields() -> None:
    """Context fields injected by middleware appear in JSON output."""
    formatter = _JsonFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg="test message",
        args=(),
        exc_info=None,
    )
    # Simulate what the RequestContextMiddleware does
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.method = "GET"  # type: ignore[attr-defined]
    record.path = "/health"  # type: ignore[attr-defined]
    record.duration_ms = 12.5  # type: ignore[attr-defined]

    output = formatter.format(record)
    parsed = json.loads(output)
    assert parsed["request_id"] == "abc-123"
    assert parsed["method"] == "GET"
    assert parsed["path"] == "/health"
    assert parsed["duration_ms"] == 12.5


def test_json_formatter_includes_exception_info() -> None:
    """Exception info appears as an 'exception' key in JSON output."""
    import sys

    formatter = _JsonFormatter()
    try:
        raise ValueError("test error")
    except ValueError:
        exc_info = sys.exc_info()
        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="test.py",
            lineno=1,
            msg="Something failed",
            args=(),
            exc_info=exc_info,
        )
        output = formatter.format(record)

    parsed = json.loads(output)
    assert "exception" in parsed
    assert "ValueError: test error" in parsed["exception"]


def test_container_formatter_still_works() -> None:
    """Regression: existing human-readable format is unchanged."""
    formatter = _ContainerFormatter()
    record = logging.LogRecord(
        name="app.main",
        level=logging.INFO,
        pathname="main.py",
        lineno=10,
        msg="server started",
        args=(),
        exc_info=None,
    )
    output = formatter.format(record)
    # Should contain level, logger name, and message as plain text
    assert "INFO" in output
    assert "app.main" in output
    assert "server started" in output
    # Should NOT be JSON
    try:
        json.loads(output)
        raise AssertionError("Container format should not be valid JSON")
    except json.JSONDecodeError:
        pass  # expected


def test_json_formatter_lifts_credential_context() -> None:
    """credential_id / outcome set by the lifecycle engine become top-level keys."""
    formatter = _JsonFormatter()
    record = logging.LogRecord(
        name="app.services.credential_service",
        level=logging.WARNING,
        pathname="credential_service.py",
        lineno=1,
        msg="Access denied for %s: %s",
        args=("ACE-WXYZ-****-****", "device_mismatch"),
        exc_info=None,
    )
    record.credential_id = "7b0c7a6e-0000-4000-8000-000000000000"  # type: ignore[attr-defined]
    record.outcome = "device_mismatch"  # type: ignore[attr-defined]

    parsed = json.loads(formatter.format(record))
    assert parsed["credential_id"] == "7b0c7a6e-0000-4000-8000-000000000000"
    assert parsed["outcome"] == "device_mismatch"


def test_json_formatter_skips_placeholder_request_id() -> None:
    """Outside a request the filter sets request_id="-"; it is left out."""
    formatter = _JsonFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg="startup",
        args=(),
        exc_info=None,
    )
    record.request_id = "-"  # type: ignore[attr-defined]
    record.credential_id = None  # type: ignore[attr-defined]

    parsed = json.loads(formatter.format(record))
    assert "request_id" not in parsed
    assert "credential_id" not in parsed
