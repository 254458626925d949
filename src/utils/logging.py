"""
Logging utilities for Lambda functions.

Provides structured JSON logging with correlation IDs for tracing requests
across resolver, trigger and scheduled-job invocations.
"""

import json
import logging
import os
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


class StructuredLogger:
    """
    JSON logger for Lambda functions with correlation ID support.

    Example:
        logger = StructuredLogger(__name__)
        logger.info("Booking completed", appointment_id="APPOINTMENT#123", user_id="USER#456")
    """

    def __init__(
        self,
        name: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        self.logger = logging.getLogger(name)
        self.level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.logger.setLevel(self.level)
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def _enabled(self, level: str) -> bool:
        return _LEVELS.get(level, 0) >= _LEVELS.get(self.level, 20)

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        """Internal method to emit structured JSON logs."""
        if not self._enabled(level):
            return

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "logger": self.logger.name,
            "message": message,
            "correlationId": self.correlation_id,
            **kwargs,
        }

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        print(json.dumps(log_entry, default=str))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info level message."""
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning level message."""
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error level message."""
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug level message."""
        self._log("DEBUG", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error level message with the active traceback attached."""
        self._log("ERROR", message, traceback=traceback.format_exc(), **kwargs)


def get_correlation_id(event: Dict[str, Any]) -> str:
    """
    Extract or generate correlation ID from Lambda event.

    Checks for correlation ID in:
    1. event['requestContext']['requestId'] (AppSync)
    2. event['request']['headers']['x-correlation-id']
    3. Generates new UUID if not found
    """
    request_context = event.get("requestContext") or {}
    if request_context.get("requestId"):
        return str(request_context["requestId"])

    headers = (event.get("request") or {}).get("headers") or {}
    if headers.get("x-correlation-id"):
        return str(headers["x-correlation-id"])

    return str(uuid.uuid4())


def get_logger(name: str, correlation_id: Optional[str] = None) -> StructuredLogger:
    """Create a structured logger, optionally bound to a request correlation ID."""
    return StructuredLogger(name, correlation_id)
