"""Structured logging setup shared by the API server, CLI and sweeper."""

from __future__ import annotations

import logging
import sys

import structlog

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "kubernetes_asyncio",
    "botocore",
    "aiobotocore",
    "aioboto3",
    "uvicorn.access",
)


def configure_logging(*, level: str = "INFO", json: bool | None = None) -> None:
    """Configure structlog and route stdlib logging through the same level.

    Args:
        level: Minimum log level name.
        json: Force JSON (True) or console (False) rendering. Defaults to
            console output when stderr is a TTY.
    """
    if json is None:
        json = not sys.stderr.isatty()

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=True, pad_event=30)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[logging.StreamHandler()],
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
