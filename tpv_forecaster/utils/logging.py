"""
Logging setup for the TPV Forecaster.

``configure_logging(config)`` is called once by the CLI before any pipeline
work. Library modules only ever do ``logging.getLogger(__name__)``.

Per-job context
---------------
Training runs one job per (segment, horizon) on a worker pool, so log lines
from different jobs interleave. ``job_logger()`` wraps a module logger in a
``JobLogAdapter`` that prefixes every message with ``[s=<segment> h=<horizon>]``
and attaches ``segment`` / ``horizon`` as record attributes.

JSON lines
----------
With ``json_format = true`` in ``[logging]`` every record is one object::

    {"ts": "2026-02-24T15:00:00Z", "level": "INFO", "logger": "tpv_forecaster.ml.ensemble",
     "msg": "[s=2 h=3] stack mae=812.40 r2=0.871", "segment": 2, "horizon": 3}

Solver warnings (e.g. ElasticNet convergence) are routed through the
``py.warnings`` logger so they land in the same stream.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, MutableMapping

if TYPE_CHECKING:
    from tpv_forecaster.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Third-party loggers held at WARNING regardless of the configured level
_NOISY_LOGGERS = ("lightgbm", "joblib", "sklearn", "py.warnings")

_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` attributes become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": created.strftime(LOG_DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, val)
            for key, val in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class JobLogAdapter(logging.LoggerAdapter):
    """Tag records with the (segment, horizon) job they belong to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return f"[s={self.extra['segment']} h={self.extra['horizon']}] {msg}", kwargs


def job_logger(logger: logging.Logger, segment: int, horizon: int) -> JobLogAdapter:
    return JobLogAdapter(logger, {"segment": segment, "horizon": horizon})


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(config: "LoggingConfig") -> None:
    """Install stdout (and optional file) handlers on the root logger.

    Args:
        config: ``[logging]`` section of ``AppConfig``. An empty ``log_file``
            disables the file handler.
    """
    level = logging.getLevelName(config.level.upper())
    formatter = (
        _JsonFormatter()
        if config.json_format
        else logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    )

    handlers = [_handler(logging.StreamHandler(sys.stdout), level, formatter)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _handler(logging.FileHandler(log_path, encoding="utf-8"), level, formatter)
        )

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
