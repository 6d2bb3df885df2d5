"""Logging setup utilities for shellbridge.

Configures logging for the entire application based on the logging
configuration settings.
"""

from __future__ import annotations

import logging
import sys

from shellbridge.config.settings import LoggingConfig

_HANDLER_MARKER = "_shellbridge_handler"


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for the shellbridge application.

    Sets up the ``shellbridge`` logger with the specified level, format,
    and optional file handler. Handlers installed by an earlier call are
    replaced, so calling this twice does not duplicate output.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger("shellbridge")
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(config.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        root_logger.addHandler(handler)

    root_logger.info("Logging initialized at %s level", config.level)
