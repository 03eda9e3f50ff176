"""Centralized logging configuration for the API and the Celery worker."""

import json
import logging
import sys
from datetime import datetime, timezone

from visibility_report.core.config import settings

# Structured fields passed via ``extra=`` by the pipeline and the request middleware
CONTEXT_FIELDS = ("request_id", "questionnaire_id", "batch_id", "stage")


def _context(record: logging.LogRecord) -> dict[str, str]:
    return {field: str(getattr(record, field)) for field in CONTEXT_FIELDS if hasattr(record, field)}


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class ContextFormatter(logging.Formatter):
    """Human-readable format with the job context appended, e.g. ``[questionnaire_id=...]``."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in context.items())
        first, sep, rest = line.partition("\n")
        return f"{first} [{suffix}]{sep}{rest}"


def setup_logging() -> None:
    """Configure the root logger. Safe to call more than once."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if settings.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            ContextFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root.addHandler(handler)

    # Suppress noisy libraries
    for name in ("httpx", "httpcore", "botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(level if settings.app_debug else logging.WARNING)
    logging.getLogger("celery").setLevel(level)
