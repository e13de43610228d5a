"""Structured JSON logging for the tour booking core."""

import json
import logging
import logging.handlers
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


correlation_id_context: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "correlation_id"}

# Extra fields lifted to the top level so one booking can be followed across workers.
_BOOKING_FIELDS = ("booking_number", "commit_phase")

_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "uvicorn.access")


class CorrelationIDFilter(logging.Filter):
    """Stamp each record with the correlation id of the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_context.get() or "unknown"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, booking fields at the top level."""

    def __init__(self, service_name: str = "tour-booking-core"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', 'unknown'),
        }
        if record.funcName and record.funcName != '<module>':
            log_entry["function"] = record.funcName

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRIBUTES}
        for key in _BOOKING_FIELDS:
            if key in extra:
                log_entry[key] = extra.pop(key)
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class LoggingConfig:
    """Root logger setup: JSON to stdout, optionally to a rotating file."""

    def __init__(self,
                 log_level: str = "INFO",
                 service_name: str = "tour-booking-core",
                 log_dir: Optional[str] = None,
                 enable_file: bool = True):
        self.log_level = getattr(logging, log_level.upper())
        self.service_name = service_name
        self.enable_file = enable_file
        self.log_dir = Path(log_dir) if log_dir else Path(__file__).parents[3] / "logs"

    def setup_logging(self) -> None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.setLevel(self.log_level)

        handlers = [logging.StreamHandler(sys.stdout)]
        if self.enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                filename=self.log_dir / f"{self.service_name}.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            ))

        formatter = JSONFormatter(service_name=self.service_name)
        for handler in handlers:
            handler.addFilter(CorrelationIDFilter())
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_context.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id_context.get()


def clear_correlation_id() -> None:
    correlation_id_context.set(None)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


def log_request(logger: logging.Logger, method: str, path: str, **extra) -> None:
    logger.info(f"HTTP Request: {method} {path}", extra={"request_method": method, "request_path": path, **extra})


def log_database_operation(logger: logging.Logger, operation: str, table: str, **extra) -> None:
    logger.debug(f"Database {operation}: {table}", extra={"db_operation": operation, "db_table": table, **extra})


def log_booking_event(logger: logging.Logger, event: str, booking_number: str, **extra) -> None:
    """Log a booking lifecycle event."""
    logger.info(
        f"Booking {booking_number}: {event}",
        extra={"booking_event": event, "booking_number": booking_number, **extra},
    )


def log_commit_phase(logger: logging.Logger, phase: str, **extra) -> None:
    """Log a step of the commit protocol."""
    logger.debug(f"Commit phase: {phase}", extra={"commit_phase": phase, **extra})


def log_transition_rejected(logger: logging.Logger, booking_number: str, details: str, **extra) -> None:
    """Log a status change refused by the booking lifecycle."""
    logger.warning(
        f"Booking {booking_number}: transition rejected - {details}",
        extra={"booking_number": booking_number, "violation_details": details, **extra},
    )
