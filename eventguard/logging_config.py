"""
Logging setup for EventGuard.

Library modules only create module-level loggers; applications call
setup_logging() once at startup to install a handler.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import GuardSettings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: GuardSettings) -> None:
    """Configure the eventguard logger based on settings.

    Args:
        settings: Guard settings (log_level, log_format)
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    package_logger = logging.getLogger("eventguard")
    package_logger.setLevel(level)
    package_logger.handlers = [handler]
    package_logger.propagate = False
