import json
import logging

from newswatch.logging import (
    JsonFormatter,
    bind_job_context,
    reset_job_context,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("newswatch.runner", logging.INFO, __file__, 1, "job_split", (), None)
    record.__dict__.update(extra)
    return record


def test_extra_fields_are_emitted_next_to_the_event():
    payload = json.loads(JsonFormatter().format(_record(segments=3)))
    assert payload["event"] == "job_split"
    assert payload["level"] == "info"
    assert payload["logger"] == "newswatch.runner"
    assert payload["segments"] == 3
    assert "lineno" not in payload
    assert "job_id" not in payload


def test_bound_job_id_tags_records_until_reset():
    token = bind_job_context("CNNW_20230101123000_MorningShow")
    try:
        payload = json.loads(JsonFormatter().format(_record()))
        assert payload["job_id"] == "CNNW_20230101123000_MorningShow"
    finally:
        reset_job_context(token)
    assert "job_id" not in json.loads(JsonFormatter().format(_record()))
