"""structlog setup for sync runs.

Every log line goes through stdlib logging so third-party libraries (httpx,
aiosqlite, ccxt) share one handler and one renderer. Per-exchange context is
carried in contextvars, which asyncio copies into each fetch task.
"""

import logging
import os

import structlog

# Chatty at INFO during a sync run
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "ccxt")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog through a single stdlib handler on the root logger.

    log_format is "json" (one object per line, for cron/ingest) or "console"
    (default). When not given, the LOG_FORMAT environment variable decides.
    Safe to call more than once; the root handler is replaced each time.
    """
    fmt = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(fmt),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


def bind_exchange(name: str):  # type: ignore[no-untyped-def]
    """Context manager adding exchange=<name> to every log line emitted inside it."""
    return structlog.contextvars.bound_contextvars(exchange=name)
