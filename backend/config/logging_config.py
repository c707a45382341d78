"""
Structured logging for the evaluation backend.

structlog events and stdlib records (uvicorn, python-arango, urllib3) go
through one stdlib handler, so both end up in the same format: JSON lines
for log shipping or a console rendering for development. structlog only
prepares the event dict. Rendering happens once, in the handler's
ProcessorFormatter.

Record resolution and evaluation submissions are audited through these
logs, with the request id bound by the HTTP middleware.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import Processor

from config.config import Settings, get_settings

# Libraries that log every request at INFO
NOISY_LOGGERS = ("uvicorn.access", "urllib3", "arango")

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _render_processors(log_format: str, stream: TextIO) -> list[Processor]:
    """Final formatter steps for the configured output format."""
    if log_format == "json":
        return [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=stream.isatty()),
    ]


def configure_logging(settings: Settings | None = None, stream: TextIO | None = None) -> None:
    """
    Route structlog and stdlib logging through a single handler.

    Args:
        settings: Optional settings override; log_format and log_level
            are read from it.
        stream: Output stream, stdout by default.
    """
    settings = settings or get_settings()
    stream = stream or sys.stdout

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=_render_processors(settings.log_format, stream),
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module, usually called with __name__."""
    return structlog.get_logger(name)


def log_request_context(request_id: str, method: str, path: str, **extra: Any) -> None:
    """
    Bind request context to every log entry until the next request.

    Args:
        request_id: Value of the X-Request-ID response header.
        method: HTTP method.
        path: Request path.
        **extra: Additional context fields.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        http_method=method,
        http_path=path,
        **extra,
    )
