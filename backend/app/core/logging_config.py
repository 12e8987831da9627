"""
Plote - Logging

One "plote" logger for the whole backend. Request, user and project ids live
in context variables set by the middleware and the auth dependency, and every
formatter stamps them onto the record. Production writes one JSON object per
line; everything else gets readable pipe-separated lines.
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Tuple
from contextvars import ContextVar

from app.core.config import settings


request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
project_id_var: ContextVar[str] = ContextVar('project_id', default='')

_CONTEXT_VARS: Tuple[ContextVar, ...] = (request_id_var, user_id_var, project_id_var)


def get_request_id() -> str:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_user_id() -> str:
    return user_id_var.get()


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def get_project_id() -> str:
    return project_id_var.get()


def set_project_id(project_id: str) -> None:
    project_id_var.set(project_id)


def generate_request_id() -> str:
    """Short correlation id; eight hex chars are plenty to grep one request"""
    return uuid.uuid4().hex[:8]


def current_context() -> Dict[str, str]:
    """Non-empty tracing ids of the running request"""
    return {var.name: var.get() for var in _CONTEXT_VARS if var.get()}


# Attributes every LogRecord carries; anything else came in through `extra`
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {'message', 'asctime', 'taskName'} | {var.name for var in _CONTEXT_VARS}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **current_context(),
        }

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith('_')
        )
        return json.dumps(entry, default=str)


class ContextualFormatter(logging.Formatter):
    """Plain text with %(request_id)s, %(user_id)s and %(project_id)s available"""

    def format(self, record: logging.LogRecord) -> str:
        for var in _CONTEXT_VARS:
            setattr(record, var.name, var.get() or '-')
        return super().format(record)


class PloteLogger(logging.Logger):
    """Logger with one helper per kind of event the backend reports"""

    def _event(self, level: int, event_type: str, message: str, **fields) -> None:
        # stacklevel 3 attributes the record to whoever called log_auth_event etc.
        self.log(level, message, extra={"event_type": event_type, **fields}, stacklevel=3)

    def log_request(self, method: str, path: str, status_code: int,
                    duration_ms: float, **kwargs) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self._event(
            level, "http_request",
            f"{method} {path} -> {status_code} ({duration_ms:.2f}ms)",
            http_method=method, http_path=path, http_status=status_code,
            duration_ms=duration_ms, **kwargs
        )

    def log_auth_event(self, event: str, success: bool, username: Optional[str] = None,
                       reason: Optional[str] = None, **kwargs) -> None:
        parts = [f"Auth {event}", "success" if success else "failed"]
        parts += [p for p in (username, reason) if p]
        self._event(
            logging.INFO if success else logging.WARNING, "auth", " - ".join(parts),
            auth_event=event, auth_success=success, auth_username=username,
            failure_reason=reason, **kwargs
        )

    def log_storage_event(self, operation: str, key: str, success: bool,
                          backend: str = "", reason: Optional[str] = None, **kwargs) -> None:
        """Blob store operations; failures are warnings since callers tolerate most of them"""
        message = f"[Storage:{backend}] {operation} {key}: {'ok' if success else 'failed'}"
        if reason:
            message += f" - {reason}"
        self._event(
            logging.INFO if success else logging.WARNING, "storage", message,
            storage_operation=operation, storage_key=key, storage_backend=backend,
            storage_success=success, failure_reason=reason, **kwargs
        )

    def log_error_with_context(self, error: Exception, context: Optional[str] = None,
                               **kwargs) -> None:
        self.error(
            f"Unhandled {type(error).__name__} in {context}: {error}",
            exc_info=error,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_context": context,
                **kwargs
            }
        )


TEXT_FORMAT = (
    "%(asctime)s | %(levelname)-8s | [%(request_id)s] [%(user_id)s] [%(project_id)s] | "
    "%(funcName)s:%(lineno)d | %(message)s"
)
CONSOLE_FORMAT = "%(levelname)-8s | [%(request_id)s] %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "botocore", "urllib3")


def _formatters(json_logs: bool) -> Tuple[logging.Formatter, logging.Formatter]:
    """(file formatter, console formatter)"""
    if json_logs:
        formatter = JSONFormatter()
        return formatter, formatter
    return ContextualFormatter(TEXT_FORMAT), ContextualFormatter(CONSOLE_FORMAT)


def setup_logging() -> PloteLogger:
    logging.setLoggerClass(PloteLogger)
    plote_logger = logging.getLogger("plote")
    # getLogger may have built the instance before the class was registered
    plote_logger.__class__ = PloteLogger
    plote_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    plote_logger.handlers.clear()

    json_logs = settings.ENVIRONMENT == "production"
    file_formatter, console_formatter = _formatters(json_logs)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(console_formatter)
    plote_logger.addHandler(console)

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=10 if json_logs else 5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        plote_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    plote_logger.info(
        f"Logging ready ({settings.ENVIRONMENT}, level {settings.LOG_LEVEL})",
        extra={"json_logging": json_logs}
    )
    return plote_logger


logger: PloteLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'current_context',
    'get_request_id',
    'set_request_id',
    'get_user_id',
    'set_user_id',
    'get_project_id',
    'set_project_id',
    'generate_request_id',
    'PloteLogger',
    'JSONFormatter',
    'ContextualFormatter',
]
