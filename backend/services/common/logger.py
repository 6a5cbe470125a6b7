"""
Structured logging for the Masjid Finder backend
"""
import logging
import json
import sys
from datetime import datetime, timezone
from uuid import UUID

EXTRA_FIELDS = ["mosque_id", "search_by", "count", "page", "role", "user_id"]


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": getattr(record, "service", record.name),
            "message": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                value = getattr(record, key)
                if isinstance(value, UUID):
                    value = str(value)
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceFilter(logging.Filter):
    """Stamps the owning service name on every record of a logger"""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        return True


def get_logger(service: str, level: str = "INFO") -> logging.Logger:
    """Get a logger for a service"""
    logger = logging.getLogger(service)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        handler.addFilter(ServiceFilter(service))
        logger.addHandler(handler)
        logger.setLevel(level.upper())

    return logger
