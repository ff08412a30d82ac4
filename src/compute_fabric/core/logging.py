"""Process-wide logging setup.

Every record carries the id of the request that produced it. The HTTP
middleware binds the id from ``X-Request-ID``; scheduler-thread records carry
``-`` instead.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_FILE_NAME = "compute_fabric.log"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s"

_REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="")


def set_correlation_id(cid: str) -> None:
    """Bind ``cid`` to the current request context."""
    _REQUEST_ID.set(cid)


class CorrelationIdFilter(logging.Filter):
    """Stamp ``record.correlation_id`` so both formatters can use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _REQUEST_ID.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra_context`` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or _REQUEST_ID.get(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_context", {}))
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """Log to stdout, and to ``log_dir/compute_fabric.log`` when a directory is given."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / LOG_FILE_NAME))

    formatter = JsonFormatter() if json_logs else logging.Formatter(TEXT_FORMAT)
    for handler in handlers:
        handler.addFilter(CorrelationIdFilter())
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """Log ``message`` with structured fields picked up by :class:`JsonFormatter`."""
    logger.log(getattr(logging, level.upper()), message, extra={"extra_context": context})
