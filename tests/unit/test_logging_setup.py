"""Tests for logging configuration helpers."""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from lite_idp.bootstrap.logging_setup import (
    CorrelationIdFilter,
    JsonFormatter,
    configure_logging,
    redact_sensitive,
)
from lite_idp.domain.correlation_id import get_logger, request_scope


@pytest.fixture(autouse=True)
def reset_project_logger():
    """Drop handlers installed by a test so later tests start clean."""
    yield
    logger = logging.getLogger("lite_idp")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def _record(name: str = "lite_idp.access", msg: str = "request") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_stdout_destination_installs_one_json_stream_handler():
    adapter = configure_logging("DEBUG", "stdout")

    logger = adapter.logger
    assert logger.name == "lite_idp"
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    [handler] = logger.handlers
    assert isinstance(handler, logging.StreamHandler)
    assert isinstance(handler.formatter, JsonFormatter)


def test_reconfiguring_replaces_the_previous_handler():
    configure_logging("INFO", "stdout")
    adapter = configure_logging("ERROR", "stdout", use_json=False)

    assert len(adapter.logger.handlers) == 1
    assert not isinstance(adapter.logger.handlers[0].formatter, JsonFormatter)


def test_file_destination_writes_rotating_log(tmp_path: Path):
    destination = tmp_path / "logs" / "idp.log"
    adapter = configure_logging("WARNING", destination.as_posix())

    [handler] = adapter.logger.handlers
    assert handler.baseFilename == destination.as_posix()

    get_logger("main").warning("disk is reachable")
    handler.flush()

    lines = destination.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["message"] == "disk is reachable"
    assert json.loads(lines[-1])["component"] == "main"


def test_unknown_level_falls_back_to_info():
    adapter = configure_logging("chatty", "stdout")

    assert adapter.logger.level == logging.INFO


def test_json_lines_carry_request_id_and_component():
    formatter = JsonFormatter()
    with request_scope("req-42"):
        _, kwargs = get_logger("transport.worker").process("handled", {})
    record = _record("lite_idp.transport.worker", "handled")
    record.__dict__.update(kwargs["extra"])

    payload = json.loads(formatter.format(record))

    assert payload["correlation_id"] == "req-42"
    assert payload["component"] == "transport.worker"
    assert payload["message"] == "handled"


def test_filter_fills_fields_for_foreign_records():
    record = _record(name="urllib3.connectionpool")

    assert CorrelationIdFilter().filter(record)
    assert record.correlation_id == "-"
    assert record.component == "urllib3.connectionpool"


def test_text_format_renders_filtered_record():
    adapter = configure_logging("INFO", "stdout", use_json=False)
    [handler] = adapter.logger.handlers
    record = _record(msg="plain text")
    handler.filter(record)

    line = handler.format(record)

    assert "plain text" in line
    assert "[-]" in line


def test_extras_are_emitted_and_secrets_redacted():
    record = _record()
    record.event = "request_completed"
    record.status_code = 200
    record.error = "password=hunter2"
    record.route = "/SAML2/Redirect/SSO"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["event"] == "request_completed"
    assert payload["status_code"] == 200
    assert payload["error"] == "[REDACTED]"
    assert payload["route"] == "/SAML2/Redirect/SSO"


@pytest.mark.parametrize(
    "value",
    ["token=abc", "SAMLRequest=fZJNT8MwDIbv", "a" * 48, "0123456789abcdef" * 3],
)
def test_redact_sensitive_hides_secret_looking_values(value: str):
    assert redact_sensitive(value) == "[REDACTED]"


@pytest.mark.parametrize("value", ["", "127.0.0.1:9443", "/etc/lite-idp/cert.pem"])
def test_redact_sensitive_keeps_plain_values(value: str):
    assert redact_sensitive(value) == value


def test_configure_logging_announces_its_handler():
    with patch("lite_idp.bootstrap.logging_setup._build_handler") as build:
        handler = MagicMock()
        handler.level = logging.INFO
        build.return_value = handler

        configure_logging("INFO", None)

    record = handler.handle.call_args[0][0]
    assert record.msg == "Logging configured"
    assert record.event == "logging_configured"
    assert record.destination == "stdout"
    assert record.use_json is True
