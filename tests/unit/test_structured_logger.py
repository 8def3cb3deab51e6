# Needs: python-package:pytest>=8.0

import json
import logging

import pytest

from model_harness.structured_logger import (
    StructuredJSONFormatter,
    case_context,
    case_id_var,
    get_structured_logger,
)


def _record(msg: str, extra=None) -> logging.LogRecord:
    base_logger = logging.getLogger("test.structured_logger")
    return base_logger.makeRecord(
        name="test.structured_logger",
        level=logging.INFO,
        fn=__file__,
        lno=12,
        msg=msg,
        args=(),
        exc_info=None,
        extra=extra,
    )


@pytest.mark.unit
def test_formatter_includes_case_context_and_extra_fields() -> None:
    formatter = StructuredJSONFormatter(service_name="test-harness")
    record = _record("pulled model", extra={"extra_fields": {"bytes": 1024}})

    with case_context("generate/gemma3:1b", "gemma3:1b"):
        payload = json.loads(formatter.format(record))

    assert payload["message"] == "pulled model"
    assert payload["service"] == "test-harness"
    assert payload["case_id"] == "generate/gemma3:1b"
    assert payload["model"] == "gemma3:1b"
    assert payload["bytes"] == 1024


@pytest.mark.unit
def test_case_context_is_reset_on_exit() -> None:
    formatter = StructuredJSONFormatter(service_name="test-harness")

    with case_context("embed/all-minilm:latest", "all-minilm:latest"):
        pass
    payload = json.loads(formatter.format(_record("after")))

    assert case_id_var.get() is None
    assert "case_id" not in payload
    assert "model" not in payload


@pytest.mark.unit
def test_formatter_can_omit_case_context() -> None:
    formatter = StructuredJSONFormatter(service_name="test-harness", include_case=False)

    with case_context("generate/x:latest", "x:latest"):
        payload = json.loads(formatter.format(_record("quiet")))

    assert "case_id" not in payload


@pytest.mark.unit
def test_formatter_records_outcome_fields() -> None:
    formatter = StructuredJSONFormatter(service_name="test-harness")
    record = _record("done", extra={"outcome": "passed", "duration_ms": 12.5})

    payload = json.loads(formatter.format(record))

    assert payload["outcome"] == "passed"
    assert payload["duration_ms"] == 12.5


@pytest.mark.unit
@pytest.mark.parametrize("outcome, level", [
    ("passed", logging.INFO),
    ("failed", logging.ERROR),
    ("skipped_timeout", logging.WARNING),
    ("skipped_resource", logging.WARNING),
])
def test_case_result_log_level_follows_outcome(caplog, outcome, level) -> None:
    structured = get_structured_logger("test.case_results")

    with caplog.at_level(logging.INFO, logger="test.case_results"):
        structured.log_case_result("generate/m:latest", outcome, 1500.0, detail="why")

    [record] = caplog.records
    assert record.levelno == level
    assert record.getMessage() == f"generate/m:latest {outcome} 1500ms: why"
    assert record.outcome == outcome
