"""
Logging configuration for the fee ledger service.
Plain text lines by default; JSON lines when LOG_JSON is set.
"""

import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter

from fee_ledger.core.config import settings


class LedgerJsonFormatter(JsonFormatter):
    """JSON formatter that carries ledger context passed through ``extra``."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        for key in ("ledger_id", "student_ref", "payment_id", "error_code"):
            if hasattr(record, key):
                log_record[key] = str(getattr(record, key))


def build_logging_config(level: str, json_output: bool) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": LedgerJsonFormatter,
                "format": "%(timestamp)s %(level)s %(logger)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "level": level,
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "standard",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": level,
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
                "propagate": True,
            },
        },
    }


def configure_logging() -> None:
    logging.config.dictConfig(build_logging_config(settings.log_level.upper(), settings.log_json))
