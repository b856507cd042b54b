"""JSON logging with stable schema."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from phone_sensing.common.constants import JSON_LOG_FIELDS
from phone_sensing.common.fs import ensure_dir
from phone_sensing.common.time_utils import utc_timestamp_iso

ROOT_LOGGER_NAME = "phone_sensing"


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": utc_timestamp_iso(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", None),
            "subsystem": getattr(record, "subsystem", None),
            "stream": getattr(record, "stream", None),
            "provider": getattr(record, "provider", None),
            "event": getattr(record, "event", None),
            "status": getattr(record, "status", None),
            "rows_out": getattr(record, "rows_out", None),
            "error_code": getattr(record, "error_code", None),
            "message": record.getMessage(),
        }
        for field in JSON_LOG_FIELDS:
            payload.setdefault(field, None)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def get_logger(area: str) -> logging.Logger:
    """Child logger under the package root, e.g. ``phone_sensing.location``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{area}")


def build_logger(run_id: str, data_dir: Path, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level.upper())
    logger.handlers.clear()

    stream = logging.StreamHandler()
    stream.setFormatter(JsonLineFormatter())
    logger.addHandler(stream)

    log_path = data_dir / "run_meta" / f"{run_id}.log.jsonl"
    ensure_dir(log_path.parent)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(JsonLineFormatter())
    logger.addHandler(file_handler)

    return logger


def log_event(
    logger: logging.Logger,
    message: str,
    *,
    level: int = logging.INFO,
    exc_info: bool = False,
    **event_fields: Any,
) -> None:
    logger.log(level, message, exc_info=exc_info, extra=event_fields)
