"""Logging setup shared by the API, the trigger runner and the settlement worker.

structlog events and plain ``logging`` records (the services and SQLAlchemy
log through the stdlib) go through one ``ProcessorFormatter`` so both come
out in the same JSON or console shape, tagged with the deployment.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from credo.config import Settings

_HANDLER_NAME = "credo"


def _add_deployment(settings: Settings) -> structlog.types.Processor:
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", "credo")
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def setup_logging(settings: Settings, stream: IO[str] | None = None) -> None:
    """Route structlog and stdlib logging to one handler on the root logger.

    Safe to call more than once: only the handler installed by a previous
    call is replaced.
    """
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_deployment(settings),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
    )
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # Statement echo only in debug
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)
