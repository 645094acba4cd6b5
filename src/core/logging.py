"""
Structured Logging

structlog over the standard library. Each event is a snake_case name plus
key/value context; the workflow id and pipeline stage of the transition
being run are attached automatically from context variables.
"""

import sys
import time
import inspect
import logging
import structlog
from typing import Optional, Any, Dict, List
from contextvars import ContextVar
from functools import wraps

workflow_id_var: ContextVar[Optional[str]] = ContextVar("workflow_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

APP_VERSION = "1.0.0"

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def add_app_context(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Attach app version, workflow id and stage to the event."""
    event_dict["version"] = APP_VERSION

    workflow_id = workflow_id_var.get()
    if workflow_id:
        event_dict.setdefault("workflow_id", workflow_id)

    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def _processors(json_format: bool) -> List[Any]:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(log_level: str = "INFO", json_format: bool = True):
    """
    Route structlog through stdlib logging on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines when True, coloured console output otherwise
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_processors(json_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Bind workflow id and stage for everything logged inside the block.

        with LogContext(workflow_id=orch.workflow_id, stage="synthesis"):
            logger.info("synthesis_authorized", model_id=model_id)

    Values that are None leave the current binding alone.
    """

    def __init__(self, workflow_id: Optional[str] = None, stage: Optional[str] = None):
        self._bindings = [(workflow_id_var, workflow_id), (stage_var, stage)]
        self._tokens = []

    def __enter__(self):
        self._tokens = [var.set(value) for var, value in self._bindings if value]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens = []
        return False


def with_logging(stage: str):
    """
    Wrap an async orchestrator transition with stage_started /
    stage_completed / stage_failed events (with ``duration_ms``).

    The instance must expose ``workflow_id``.
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError("with_logging only wraps coroutine functions")

        logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            with LogContext(workflow_id=getattr(self, "workflow_id", None), stage=stage):
                logger.info("stage_started")
                started = time.perf_counter()
                try:
                    result = await func(self, *args, **kwargs)
                except Exception as e:
                    logger.error(
                        "stage_failed",
                        duration_ms=int((time.perf_counter() - started) * 1000),
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise
                logger.info(
                    "stage_completed",
                    duration_ms=int((time.perf_counter() - started) * 1000)
                )
                return result

        return wrapper

    return decorator
