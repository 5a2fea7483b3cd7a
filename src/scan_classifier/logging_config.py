"""
structlog setup shared by the daemon and the CLI commands.

Our own loggers and third-party stdlib loggers end up in the same stdout
handler, rendered either for a terminal (``LOG_FORMAT=console``) or as one
JSON object per line (``LOG_FORMAT=json``).
"""

import logging
import sys

import structlog

from .config import Settings

# Libraries that log every HTTP request or image decode at INFO/DEBUG
QUIET_LOGGERS = ("httpx", "urllib3", "openai", "openai._base_client", "PIL")


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderers(log_format: str) -> list:
    if log_format == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(settings: Settings) -> None:
    """
    Route structlog and stdlib logging through a single stdout handler.

    Safe to call more than once: the root handlers are replaced, not added to.
    """
    pre_chain = _pre_chain()
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + _renderers(settings.LOG_FORMAT),
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(settings.LOG_LEVEL)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
