"""
Logging setup for the service
Records up to INFO are written to stdout and WARNING and above to stderr.
structlog loggers render through the same stdlib handlers.
"""

import sys
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict

import structlog


class JSONFormatter(logging.Formatter):
    """One JSON object per log line"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
            "line": record.lineno,
        }

        context = getattr(record, "extra_fields", None)
        if isinstance(context, dict):
            log_obj.update(context)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class LevelRangeFilter(logging.Filter):
    """Pass records whose level lies within [min_level, max_level]"""

    def __init__(self, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL):
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


def configure_structlog(use_json: bool = True) -> None:
    """Route structlog through stdlib logging with bound contextvars merged in"""
    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _stream_handler(stream, formatter: logging.Formatter, log_filter: logging.Filter) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.addFilter(log_filter)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure the root logger and structlog

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL; unknown names fall back to INFO
        log_format: "json" for structured lines, anything else for plain text
    """
    log_level = log_level.upper()
    use_json = log_format.lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    root_logger.handlers.clear()

    if use_json:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    root_logger.addHandler(_stream_handler(sys.stdout, formatter, LevelRangeFilter(max_level=logging.INFO)))
    root_logger.addHandler(_stream_handler(sys.stderr, formatter, LevelRangeFilter(min_level=logging.WARNING)))

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    configure_structlog(use_json)

    logging.getLogger(__name__).info(
        f"Logging configured: level={log_level}, format={'json' if use_json else 'text'}"
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def add_log_context(**kwargs: Any) -> Dict[str, Any]:
    """
    Build the `extra` argument for a stdlib logger call

    Example:
        logger.info("Worker ready", extra=add_log_context(worker_pid=1234))
    """
    return {"extra_fields": kwargs}
