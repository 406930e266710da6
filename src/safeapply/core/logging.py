"""
safeapply.core.logging - structlog Setup
==========================================

Every module obtains its logger with ``structlog.get_logger()`` and binds a
``component`` key. This module only decides the minimum level and renderer;
it is called once by the SafeApply facade.

Usage:
    >>> from safeapply.core.logging import configure_logging
    >>> configure_logging("DEBUG")
"""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog with a level filter.

    Args:
        level: Standard level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        json_output: Render JSON lines instead of the console renderer.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
