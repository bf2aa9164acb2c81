############################################################
#
# switchyard - Messages API Translation Gateway
#
# logging_config.py: Structured logging configuration using structlog
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from backend.app.settings import Settings, get_settings

# Event fields that may carry an upstream credential
SECRET_FIELDS = frozenset(
    {"authorization", "x-api-key", "x-goog-api-key", "api_key", "secret", "headers"}
)


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential-bearing fields so provider keys never reach the log."""
    for key, value in list(event_dict.items()):
        if key.lower() not in SECRET_FIELDS or not value:
            continue
        if isinstance(value, dict):
            event_dict[key] = {
                name: _mask(str(v)) if name.lower() in SECRET_FIELDS else v
                for name, v in value.items()
            }
        else:
            event_dict[key] = _mask(str(value))
    return event_dict


def _mask(value: str) -> str:
    # Keep the scheme ("Bearer") or key prefix ("sk-") for debugging
    if len(value) <= 12:
        return "***"
    return f"{value[:7]}***"


def _add_service(app_name: str) -> Processor:
    def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", app_name)
        return event_dict
    return add_service


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structured logging for the gateway process.

    Every record carries the service name, any request context bound by
    ``bind_request_context`` (request_id, provider, model, message_id) and
    has credential fields masked before rendering.
    """
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service(settings.app_name),
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        # Gateway usually runs in a terminal next to the CLI it serves
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr keeps stdout free for launchers that capture it
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    handlers: list[logging.Handler] = [console_handler]
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)

    # Upstream clients log every streamed request line at INFO
    for logger_name in ["uvicorn.access", "httpx", "httpcore"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_request_context(**kwargs: Any) -> None:
    """Bind request context variables (request_id, provider, model) for logging."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    """Clear request context variables."""
    structlog.contextvars.clear_contextvars()
