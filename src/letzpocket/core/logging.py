"""Structured logging with structlog.

JSON lines in production (or with ``LOG_FORMAT=json``), coloured console
output otherwise. Every entry carries the service name, environment and the
request's correlation id, and the PropertyData API key is masked wherever it
appears in a logged URL.

Usage:
    from letzpocket.core.logging import configure_logging, get_logger

    configure_logging(settings)
    logger = get_logger(__name__)
    logger.info("cache_hit", postcode="SW1A1AA", data_type="rents")
"""

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from letzpocket.config import Settings

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# PropertyData authenticates with a ``key`` query parameter
_API_KEY_PARAM = re.compile(r"([?&]key=)[^&\s'\"]+")

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "apscheduler")


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_ctx.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_ctx.set(None)


def add_correlation_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def redact_api_key(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask ``key=...`` query parameters in string values."""
    for name, value in event_dict.items():
        if isinstance(value, str) and "key=" in value:
            event_dict[name] = _API_KEY_PARAM.sub(r"\1****", value)
    return event_dict


def _service_context(settings: Settings) -> Processor:
    service = settings.app_name.lower()
    environment = settings.app_env.value

    def add_service_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service_context


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        settings: Application settings; defaults to ``get_settings()``
    """
    if settings is None:
        from letzpocket.config import get_settings

        settings = get_settings()

    log_level = getattr(logging, settings.log_level.value, logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_correlation_id,
        _service_context(settings),
        redact_api_key,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if settings.use_json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib records (uvicorn, sqlalchemy) through the same pipeline
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> Any:
    """Bind values to every entry logged inside the ``with`` block.

    Example:
        with log_context(user_id="user-456", batch_size=3):
            logger.info("batch_started")
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
