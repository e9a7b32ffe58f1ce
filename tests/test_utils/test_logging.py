"""
Tests for tpv_forecaster/utils/logging.py.

What we test
------------
_JsonFormatter:
  - Emits ts / level / logger / msg plus extra= fields as one JSON object.

job_logger():
  - Prefixes messages with the job key and carries segment / horizon as
    record attributes that the JSON formatter emits.

configure_logging():
  - Sets the root level and writes to the configured log file.
  - Python warnings are captured into the log stream.
"""

from __future__ import annotations

import json
import logging
import warnings

import pytest

from tpv_forecaster.config import LoggingConfig
from tpv_forecaster.utils.logging import _JsonFormatter, configure_logging, job_logger


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


def test_json_formatter_fields():
    record = logging.makeLogRecord(
        {"name": "tpv_forecaster.ml", "levelname": "INFO", "levelno": logging.INFO,
         "msg": "segment=%d done", "args": (2,), "horizon": 3}
    )
    payload = json.loads(_JsonFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "tpv_forecaster.ml"
    assert payload["msg"] == "segment=2 done"
    assert payload["horizon"] == 3
    assert payload["ts"].endswith("Z")


def test_configure_logging_file(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    configure_logging(LoggingConfig(level="warning", log_file=str(log_file), json_format=True))
    assert logging.getLogger().level == logging.WARNING
    logging.getLogger("tpv_forecaster.test").warning("disk check")
    for handler in logging.getLogger().handlers:
        handler.flush()
    line = log_file.read_text().strip().splitlines()[-1]
    assert json.loads(line)["msg"] == "disk check"


def test_job_logger_tags_records(caplog):
    adapter = job_logger(logging.getLogger("tpv_forecaster.ml.ensemble"), 2, 3)
    with caplog.at_level(logging.INFO, logger="tpv_forecaster.ml.ensemble"):
        adapter.info("stack mae=%.1f", 12.0)
    record = caplog.records[-1]
    assert record.getMessage() == "[s=2 h=3] stack mae=12.0"
    assert (record.segment, record.horizon) == (2, 3)
    payload = json.loads(_JsonFormatter().format(record))
    assert payload["segment"] == 2
    assert payload["horizon"] == 3


def test_configure_logging_captures_warnings(tmp_path):
    log_file = tmp_path / "run.log"
    # drop any hook left installed so configure_logging installs a fresh one
    logging.captureWarnings(False)
    configure_logging(LoggingConfig(level="info", log_file=str(log_file)))
    with warnings.catch_warnings():
        warnings.simplefilter("always")
        warnings.warn("solver did not converge", UserWarning)
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "solver did not converge" in log_file.read_text()
