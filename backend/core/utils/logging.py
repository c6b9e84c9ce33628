"""
Structured JSON logging for audit-grade events: redemption outcomes, fraud
blocks, degraded discount rules and store failures.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.config import settings

AUDIT_LOGGER_NAME = "shc.audit"


class JsonFormatter(logging.Formatter):
    """Renders the entry attached to a record as one JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        entry = getattr(record, "entry", None) or {"message": record.getMessage()}
        # default=str keeps UUIDs, Decimals and datetimes in metadata serializable
        return json.dumps(entry, default=str)


class StructuredLogger:

    def __init__(self, name: str = AUDIT_LOGGER_NAME, service: Optional[str] = None):
        self.service = service or settings.SERVICE_NAME
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JsonFormatter())
            self.logger.addHandler(handler)

    def _entry(
        self,
        level: int,
        message: str,
        user_id: Optional[str],
        endpoint: Optional[str],
        metadata: Optional[Dict[str, Any]],
        exception: Optional[BaseException],
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level),
            "message": message,
            "service": self.service,
        }
        if user_id:
            entry["user_id"] = str(user_id)
        if endpoint:
            entry["endpoint"] = endpoint
        if metadata:
            entry["metadata"] = metadata
        if exception is not None:
            entry["exception"] = {"type": type(exception).__name__, "message": str(exception)}
        return entry

    def log(
        self,
        level: int,
        message: str,
        user_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ):
        if self.logger.isEnabledFor(level):
            entry = self._entry(level, message, user_id, endpoint, metadata, exception)
            self.logger.log(level, message, extra={"entry": entry})

    def info(self, message: str, **fields):
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self.log(logging.ERROR, message, **fields)


structured_logger = StructuredLogger()
