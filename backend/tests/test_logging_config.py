"""Tests for the logging setup: one rendering per line, both for structlog and stdlib records."""
import io
import json
import logging

import pytest
import structlog

from config.config import Settings
from config.logging_config import configure_logging, get_logger, log_request_context


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    yield stream
    structlog.contextvars.clear_contextvars()
    configure_logging()


def json_lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_event_is_rendered_once(log_stream):
    configure_logging(Settings(_env_file=None, log_format="json", log_level="INFO"), stream=log_stream)

    get_logger("services.record_resolver").info("Patient resolved", patient_id="1")

    (entry,) = json_lines(log_stream)
    assert entry["event"] == "Patient resolved"
    assert entry["patient_id"] == "1"
    assert entry["level"] == "info"
    assert entry["logger"] == "services.record_resolver"
    assert "timestamp" in entry


def test_stdlib_records_use_the_same_format(log_stream):
    configure_logging(Settings(_env_file=None, log_format="json", log_level="INFO"), stream=log_stream)

    logging.getLogger("uvicorn.error").info("Started server process")

    (entry,) = json_lines(log_stream)
    assert entry["event"] == "Started server process"
    assert entry["logger"] == "uvicorn.error"


def test_request_context_is_attached(log_stream):
    configure_logging(Settings(_env_file=None, log_format="json", log_level="INFO"), stream=log_stream)

    log_request_context(request_id="req-1", method="GET", path="/api/patients")
    get_logger("main").info("Request completed", status_code=200)

    (entry,) = json_lines(log_stream)
    assert entry["request_id"] == "req-1"
    assert entry["http_path"] == "/api/patients"


def test_level_filtering(log_stream):
    configure_logging(Settings(_env_file=None, log_format="json", log_level="WARNING"), stream=log_stream)

    logger = get_logger("services.patient_service")
    logger.info("Patient service configured")
    logger.warning("Serving degraded patient record", patient_id="1")

    assert [entry["event"] for entry in json_lines(log_stream)] == ["Serving degraded patient record"]


def test_noisy_libraries_are_quieted(log_stream):
    configure_logging(Settings(_env_file=None, log_format="json", log_level="DEBUG"), stream=log_stream)

    logging.getLogger("urllib3.connectionpool").info("Starting new HTTP connection")

    assert log_stream.getvalue() == ""


def test_console_format_is_plain_text(log_stream):
    configure_logging(Settings(_env_file=None, log_format="console", log_level="INFO"), stream=log_stream)

    get_logger("services.record_cache").info("Patient record cache invalidated")

    output = log_stream.getvalue()
    assert "Patient record cache invalidated" in output
    assert "\x1b[" not in output
