"""
Structured logging for Credvault.

Provides a pre-configured logger that emits JSON-structured log records
with lifecycle context (scope, secret, operation, rotation step) so a
rollback or an orphaned remote secret can be traced in log aggregation.
Secret values are never passed to the logger.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

_CONTEXT_KEYS = ("request_id", "scope_id", "secret_id", "operation", "step")


class StructuredFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


class CredvaultLogger:
    """Convenience wrapper around :mod:`logging` for lifecycle operations."""

    def __init__(self, name: str = "credvault") -> None:
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    def log_operation(
        self,
        level: int,
        message: str,
        *,
        scope_id: str | None = None,
        secret_id: str | None = None,
        operation: str | None = None,
        step: str | None = None,
        request_id: str | None = None,
        exc_info: bool = False,
    ) -> None:
        """Emit a structured log record with lifecycle context.

        Args:
            level: Logging level (e.g. logging.INFO).
            message: Human-readable message.
            scope_id: Backend scope the operation runs in.
            secret_id: Local id, name or ARN of the secret.
            operation: Operation name (e.g. 'create_secret').
            step: Rotation step, when running inside the rotation function.
            request_id: Optional correlation ID; auto-generated if omitted.
            exc_info: Whether to include exception info.
        """
        extra = {
            "scope_id": scope_id,
            "secret_id": secret_id,
            "operation": operation,
            "step": step,
            "request_id": request_id or uuid.uuid4().hex[:12],
        }
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log_operation(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log_operation(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log_operation(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log_operation(logging.DEBUG, message, **kwargs)


# Module-level singleton
cv_logger = CredvaultLogger()
