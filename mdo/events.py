from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from .settings import settings

LOGGER_NAME = "mdo"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": utc_now(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        module = getattr(record, "module_name", None)
        if module:
            payload["module"] = module
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str | None = None, as_json: bool | None = None) -> None:
    """Install a single stderr handler on the ``mdo`` logger.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    if as_json if as_json is not None else settings.log_json:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(message)s", "%H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(_LEVELS.get((level or settings.log_level).upper(), logging.INFO))
    logger.propagate = False


def log_event(level: str, message: str, module: str | None = None) -> None:
    lvl = _LEVELS.get(level.upper(), logging.INFO)
    text = f"[{module}] {message}" if module else message
    logging.getLogger(LOGGER_NAME).log(lvl, text, extra={"module_name": module})
