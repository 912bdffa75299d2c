# libs/observability/logging.py
from __future__ import annotations

import logging
import structlog

_CONFIGURED = False


def _level_to_int(level: str | int) -> int:
    """Accept 'INFO' / 'info' / 20 / logging.INFO and return an int level."""
    if isinstance(level, int):
        return level
    lvl = getattr(logging, str(level).upper(), None)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: str | int = "INFO") -> None:
    """
    Configure stdlib logging + structlog once per process.
    Both the API and the worker call this before building the pipeline.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    lvl = _level_to_int(level)

    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)-7s %(name)s - %(message)s",
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,             # queue/job ids bound per handler
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(component: str):
    return structlog.get_logger().bind(component=component)
