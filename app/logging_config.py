"""JSON logging configuration for the SupportDesk API."""

import json
import logging
import sys
from datetime import datetime, timezone

SERVICE_NAME = "supportdesk"

# Libraries that log every request or poll at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "websockets", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"context": {...}}`` lands under ``context``."""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "environment": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # ids, datetimes and enums in context are rendered with str()
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """Route every logger through a single stdout JSON handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(environment))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")
