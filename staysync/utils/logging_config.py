"""
Structured Logging Configuration

Provides JSON-formatted logging with:
- Request ID tracking
- Entity context (connection, conflict, reservation)
- Duration metrics for sync attempts
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Outputs logs in JSON format for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        if hasattr(record, 'entity_type'):
            log_data["entity_type"] = record.entity_type
        if hasattr(record, 'entity_id'):
            log_data["entity_id"] = record.entity_id

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds structured context to log messages.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        """Log with additional structured context."""
        extra = {}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def sync_started(self, connection_id: str, platform: str, triggered_by: str):
        self.log_with_context(
            logging.INFO,
            f"Sync started ({platform}, {triggered_by})",
            entity_type="connection",
            entity_id=connection_id,
            platform=platform,
            triggered_by=triggered_by
        )

    def sync_finished(self, connection_id: str, created: int, updated: int, cancelled: int,
                      conflicts: int, duration_ms: float):
        self.log_with_context(
            logging.INFO,
            f"Sync finished: {created} created, {updated} updated, "
            f"{cancelled} cancelled, {conflicts} conflicts",
            entity_type="connection",
            entity_id=connection_id,
            duration_ms=duration_ms,
            created=created,
            updated=updated,
            cancelled=cancelled,
            conflicts=conflicts
        )

    def sync_failed(self, connection_id: str, error: str, error_count: int, status: str):
        self.log_with_context(
            logging.WARNING,
            f"Sync failed ({error_count} consecutive): {error}",
            entity_type="connection",
            entity_id=connection_id,
            error=error,
            error_count=error_count,
            status=status
        )

    def conflict_raised(self, conflict_id: str, conflict_type: str, severity: str, external_id: str):
        self.log_with_context(
            logging.WARNING,
            f"Conflict raised: {conflict_type} ({severity}) for external booking {external_id}",
            entity_type="conflict",
            entity_id=conflict_id,
            conflict_type=conflict_type,
            severity=severity,
            external_id=external_id
        )

    def conflict_closed(self, conflict_id: str, status: str, action: Optional[str] = None):
        self.log_with_context(
            logging.INFO,
            f"Conflict {status}" + (f": {action}" if action else ""),
            entity_type="conflict",
            entity_id=conflict_id,
            status=status,
            action=action
        )

    def reservation_created(self, reservation_id: str, unit_id: str, check_in, check_out, source: str):
        self.log_with_context(
            logging.INFO,
            f"Reservation created ({source}): {check_in} -> {check_out}",
            entity_type="reservation",
            entity_id=reservation_id,
            unit_id=unit_id,
            source=source
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("staysync").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logging.getLogger(logger_name).handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set('')
