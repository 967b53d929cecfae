"""structlog setup for the admin helpers.

All log output goes to stderr; stdout is reserved for command results (tables
or `--json`). Every CLI invocation binds an `invocation_id` so the Graph
batches and lookups it triggers can be grouped when reading debug output.

Usage:
    from m365admin.core.logging import get_logger, set_correlation_id

    logger = get_logger(__name__)

    set_correlation_id(str(uuid.uuid4()))
    logger.info("batch_request_sending", operation_count=5)
"""

import logging
import sys

import structlog

CORRELATION_KEY = "invocation_id"

# Third-party loggers that are chatty at INFO (token cache hits, connection pool)
NOISY_LOGGERS = ("msal", "urllib3")


def set_correlation_id(correlation_id: str | None) -> None:
    """Bind (or clear, with None) the invocation id for the current context."""
    if correlation_id is None:
        structlog.contextvars.unbind_contextvars(CORRELATION_KEY)
    else:
        structlog.contextvars.bind_contextvars(**{CORRELATION_KEY: correlation_id})


def configure_logging(log_level: str = "WARNING", json_output: bool = False) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        log_level: Level name for the m365admin loggers (DEBUG, INFO, WARNING, ERROR)
        json_output: Render one JSON object per line instead of console output
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    # Library debug output is only useful when explicitly debugging
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
