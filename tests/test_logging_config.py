"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
import sys

from api.observability import get_request_id, reset_request_id, set_request_id
from core.logging_config import SERVICE_NAME, JSONFormatter, current_context, get_logger, log_context, setup_logging


def _record(msg="hello %s", args=("world",), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py",
        lineno=1, msg=msg, args=args, exc_info=exc_info
    )


def test_json_formatter_outputs_valid_json():
    parsed = json.loads(JSONFormatter().format(_record()))
    assert parsed["message"] == "hello world"
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "test"
    assert parsed["service"] == SERVICE_NAME
    assert "timestamp" in parsed
    assert "context" not in parsed


def test_json_formatter_includes_exception():
    try:
        raise ValueError("test error")
    except ValueError:
        exc_info = sys.exc_info()
    parsed = json.loads(JSONFormatter().format(_record("fail", (), logging.ERROR, exc_info)))
    assert parsed["exception"]["type"] == "ValueError"
    assert parsed["exception"]["message"] == "test error"


def test_json_formatter_collects_extra_fields():
    record = _record()
    record.ctx_plan_id = 7
    record.ctx_target_week = 3
    parsed = json.loads(JSONFormatter().format(record))
    assert parsed["context"] == {"plan_id": 7, "target_week": 3}


def test_log_context_stamps_job_and_plan():
    with log_context(job="weekly-plan-scan"):
        with log_context(plan_id=7, target_week=3):
            parsed = json.loads(JSONFormatter().format(_record()))
        outer = json.loads(JSONFormatter().format(_record()))
    after = json.loads(JSONFormatter().format(_record()))

    assert parsed["job"] == "weekly-plan-scan"
    assert parsed["context"] == {"plan_id": 7, "target_week": 3}
    assert outer["job"] == "weekly-plan-scan"
    assert "context" not in outer
    assert "job" not in after
    assert current_context() == {}


def test_extra_fields_override_bound_context():
    record = _record()
    record.ctx_target_week = 4
    with log_context(plan_id=7, target_week=3):
        parsed = json.loads(JSONFormatter().format(record))
    assert parsed["context"] == {"plan_id": 7, "target_week": 4}


def test_log_context_skips_empty_values():
    with log_context(job=None, plan_id=7):
        assert current_context() == {"plan_id": 7}


def test_request_id_is_promoted():
    token = set_request_id("req-123")
    try:
        assert get_request_id() == "req-123"
        parsed = json.loads(JSONFormatter().format(_record()))
    finally:
        reset_request_id(token)
    assert parsed["request_id"] == "req-123"
    assert get_request_id() is None


def test_service_name_is_configurable():
    parsed = json.loads(JSONFormatter(service="scheduler-worker").format(_record()))
    assert parsed["service"] == "scheduler-worker"


def test_get_logger_returns_named_logger():
    log = get_logger("my.module")
    assert log.name == "my.module"
    assert isinstance(log, logging.Logger)


def test_setup_logging_idempotent():
    root = logging.getLogger()
    initial_count = len(root.handlers)
    setup_logging()
    setup_logging()
    assert len(root.handlers) <= initial_count + 1
