# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Logging - structlog configuration for the CLI.

Logs go to stderr so command output on stdout stays machine-readable.
"""

import logging
import sys

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(level: str) -> int:
    """Map a level name to a logging level; unknown names mean info."""
    return _LEVELS.get((level or "").lower(), logging.INFO)


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """
    Configure structlog process-wide.

    Args:
        level: debug, info, warn or error
        fmt: "json" for one JSON object per line, "console" for humans
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if str(fmt).lower() == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(parse_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
