"""
Structured logging configuration.

structlog renders every event as JSON; stdlib records (httpx, stripe, redis)
go through a python-json-logger handler. Payment identifiers bound with
``payment_log_context`` are merged into every event logged inside the block,
so one checkout or webhook delivery can be followed by its correlation ID.
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog
from pythonjsonlogger import jsonlogger

from payment_orchestrator.config import Settings, get_settings

# Third-party loggers and the level they are held at.
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "redis": logging.WARNING,
    "stripe": logging.INFO,
}


def _app_context_processor(settings: Settings) -> Any:
    """Build a processor stamping app name and environment onto every event."""

    def add_app_context(
        logger: Any, method_name: str, event_dict: Dict[str, Any]
    ) -> Dict[str, Any]:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Route structlog and stdlib logging to JSON on stdout.

    Args:
        settings: Optional settings (uses cached settings if not provided)
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _app_context_processor(settings),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(json_handler)

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )


@contextmanager
def payment_log_context(**identifiers: Optional[str]) -> Iterator[str]:
    """
    Bind payment identifiers (order_id, event_id, ...) for the enclosed block.

    A ``correlation_id`` is generated unless one is passed or already bound by
    an enclosing block. Yields the correlation ID in effect.
    """
    bound = structlog.contextvars.get_contextvars()
    correlation_id = identifiers.pop("correlation_id", None) or bound.get("correlation_id")
    correlation_id = correlation_id or uuid.uuid4().hex
    values = {key: value for key, value in identifiers.items() if value is not None}
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id, **values):
        yield correlation_id
