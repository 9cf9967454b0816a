"""
Structured logging
JSON lines on stdout, timestamped under "requested_at"
"""
import logging
import sys

import structlog

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="requested_at"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=False,
    )


def _raw_line(_, __, event_dict):
    return event_dict["event"]


def line_logger():
    """Logger that prints the event text as-is (access and synthetic log lines)"""
    return structlog.wrap_logger(structlog.PrintLogger(sys.stdout), processors=[_raw_line])
