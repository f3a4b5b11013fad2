"""
Structured logging configuration.

structlog on top of the standard library: colored console output while
developing, JSON lines everywhere else.
"""

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "pinecone",
    "sqlalchemy.engine",
    "asyncio",
)


def setup_logging(
    log_level: str = "INFO",
    environment: Literal["development", "staging", "production"] = "development",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Minimum log level to output
        environment: Application environment (selects the renderer)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "development":
        processors: list[Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """
    Context manager binding temporary key/values to every log line.

    Example:
        with LogContext(url="https://example.com/ep1.json"):
            logger.info("transcript_fetched")  # includes url
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
