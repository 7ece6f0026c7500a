"""Tests for logging setup."""

import json
import logging

import structlog

from novel_translator.log import configure_logging, resolve_level, run_context


def test_resolve_level():
    assert resolve_level(1, "WARNING") == logging.DEBUG
    assert resolve_level(-1, "DEBUG") == logging.WARNING
    assert resolve_level(0, "error") == logging.ERROR
    assert resolve_level(0, "nonsense") == logging.INFO


def test_log_file_receives_run_context(tmp_path):
    log_file = tmp_path / "logs" / "run.jsonl"
    configure_logging(verbosity=-1, log_file=log_file)
    try:
        with run_context("novel", job_id="abc", kind="batch"):
            structlog.get_logger().debug("document_translated", document=3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
        assert record["event"] == "document_translated"
        assert record["project"] == "novel"
        assert record["job"] == "abc"
        assert record["run"] == "batch"
    finally:
        for handler in logging.getLogger().handlers:
            handler.close()
        logging.getLogger().handlers.clear()
