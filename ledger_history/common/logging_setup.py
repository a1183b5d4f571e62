import json
import logging
import os
import hashlib
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Dict, Any, Optional

import structlog

from .config import settings

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord('', logging.INFO, '', 0, '', (), None).__dict__
) | {'message', 'asctime'}

_FIELDS = ('component', 'operation', 'params_hash', 'status', 'duration_ms', 'error')


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record.

    Fixed fields (component, operation, params_hash, status, duration_ms,
    error) come from ``extra``; structlog events routed through
    ``configure_structlog`` arrive the same way, so their bound
    ``component`` is reported instead of the logger name. Any other extra
    key-value pairs are kept under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "component": getattr(record, 'component', None) or record.name,
            "message": record.getMessage(),
        }
        for field in _FIELDS[1:]:
            data[field] = getattr(record, field, None)

        # format_exc_info renders structlog tracebacks into "exception"
        exception = getattr(record, 'exception', None)
        if record.exc_info:
            exception = self.formatException(record.exc_info)
        if exception:
            data["error"] = exception
            data["status"] = "error"

        context = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in _FIELDS and key != 'exception'
        }
        if context:
            data["context"] = context

        return json.dumps({k: v for k, v in data.items() if v not in ('', None)}, default=str)


def get_logger(name: str) -> "StructuredLogger":
    """Get a stdlib logger wrapped with ``log_operation``"""
    return StructuredLogger(logging.getLogger(name))


class StructuredLogger:
    """Adds ``log_operation`` to a stdlib logger; everything else is delegated"""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def log_operation(self,
                      operation: str,
                      params: Optional[Dict[str, Any]] = None,
                      status: str = "started",
                      duration_ms: int = 0,
                      error: str = "",
                      message: str = "") -> None:
        # Account ids and timestamps are hashed, not logged verbatim
        params_hash = ""
        if params:
            encoded = json.dumps(params, sort_keys=True, default=str).encode()
            params_hash = hashlib.md5(encoded).hexdigest()[:8]

        extra = {
            'component': self._logger.name,
            'operation': operation,
            'params_hash': params_hash,
            'status': status,
            'duration_ms': duration_ms,
            'error': error,
        }

        if error:
            log, outcome = self._logger.error, "failed"
        elif status == "completed":
            log, outcome = self._logger.debug, "completed"
        else:
            log, outcome = self._logger.info, status
        log(message or f"Operation {operation} {outcome}", extra=extra)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def configure_structlog() -> None:
    """Route structlog events into stdlib logging.

    Bound key-value pairs become ``extra`` on the LogRecord, so handlers
    installed by ``setup_logging`` format them like any other record. Until
    the application installs handlers, stdlib's defaults apply and debug
    events are dropped.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def setup_logging() -> None:
    """Install JSON console and daily-rotated file handlers on the root logger"""
    os.makedirs(settings.log_dir, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.handlers = []

    log_filename = os.path.join(
        settings.log_dir,
        f"ledger_history_{datetime.now().strftime('%Y%m%d')}.log"
    )
    file_handler = TimedRotatingFileHandler(
        filename=log_filename,
        when='midnight',
        interval=1,
        backupCount=30,  # 30 days
        encoding='utf-8'
    )
    file_handler.suffix = "%Y%m%d.log"

    for handler in (logging.StreamHandler(), file_handler):
        handler.setLevel(root.level)
        handler.setFormatter(StructuredJsonFormatter())
        root.addHandler(handler)

    configure_structlog()
