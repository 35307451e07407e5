"""
Structured logging configuration.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names. The controller binds ``flow_id``/``room_id`` as context variables
around remote calls, so gateway and catalog events carry them too.

Output goes to stderr, leaving stdout to the CLI. ``json`` renders one object
per line for log shippers; ``console`` is for a developer watching a terminal.
"""
import logging
import sys
from typing import Any, Callable, List, Optional, TextIO

import structlog
from pythonjsonlogger import jsonlogger

from payment_flow.config import Settings, get_settings

QUIET_LOGGERS = ("httpx", "httpcore")

# Marks the handler installed here so reconfiguring replaces only our own
_HANDLER_FLAG = "_payment_flow_handler"

EventDict = dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]


def app_context(settings: Settings) -> Processor:
    """
    Build a processor stamping the app name and environment on every event.

    Args:
        settings: Settings the values are read from once

    Returns:
        Processor: structlog processor
    """
    app_name, app_env = settings.app_name, settings.app_env

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", app_name)
        event_dict.setdefault("app_env", app_env)
        return event_dict

    return add_app_context


def _processors(settings: Settings) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        app_context(settings),
    ]
    if settings.log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    return processors


def _handler(settings: Settings, stream: TextIO) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    if settings.log_format == "console":
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={
                    "asctime": "@timestamp",
                    "levelname": "level",
                    "name": "logger",
                },
            )
        )
    setattr(handler, _HANDLER_FLAG, True)
    return handler


def setup_logging(
    settings: Optional[Settings] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Route structlog through stdlib logging to a single stderr handler.

    Safe to call again (the CLI does, with a different level): the handler a
    previous call installed is replaced, handlers installed by others are kept.

    Args:
        settings: Level and format source (defaults to cached settings)
        stream: Output stream (defaults to stderr)

    Returns:
        logging.Handler: The installed handler
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for existing in root_logger.handlers[:]:
        if getattr(existing, _HANDLER_FLAG, False):
            root_logger.removeHandler(existing)

    handler = _handler(settings, stream or sys.stderr)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).debug(
        "logging_configured",
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
    return handler
