"""
Structured logging for the pipes, built on structlog.

Every entry carries the service name; entries written from a router worker
also carry the pipe and its work unit (queue poller index or stream
partition), bound once per worker task:

{
    "ts": "2025-11-18T04:30:00.123456Z",
    "level": "warning",
    "service": "eventpipes",
    "pipe": "stream-pipe",
    "worker": "3",
    "event": "pipe.redelivery",
    "module": "eventpipes.router.base",
    "func_name": "_record_redelivery",
    "lineno": 148,
    ...
}
"""
import logging
from typing import Any
import structlog

SERVICE_NAME = "eventpipes"

# Loggers that would otherwise print their own copy of each access/error line
_QUIET_LOGGERS = ("uvicorn.error", "uvicorn.access")


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def bind_worker(pipe: str, unit: Any):
    """Attach pipe and work unit to every entry logged by the current task."""
    structlog.contextvars.bind_contextvars(pipe=pipe, worker=str(unit))


def setup_logging(json_output: bool = True, level: str = "INFO", service_name: str = SERVICE_NAME):
    """
    Configure structlog for the service.

    Args:
        json_output: JSON lines when True, the coloured console renderer otherwise
        level: Minimum level name, e.g. "DEBUG"
        service_name: Value of the "service" field
    """
    global SERVICE_NAME
    SERVICE_NAME = service_name
    min_level = logging.getLevelName(level.upper())

    processors = [
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=min_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).handlers = []


def get_logger(**initial_values):
    return structlog.get_logger(**initial_values)
