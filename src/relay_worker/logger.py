# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the relay worker.

Handlers and formatting are configured once by the entry point through
:func:`configure_logging`; modules only ask for named loggers.

Example:
    Typical usage in a module::

        from relay_worker.logger import get_logger

        logger = get_logger("relay_worker.queue")
        logger.info("Consumer group ready")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "relay_worker") -> logging.Logger:
    """Return the standard library logger bound to ``name``."""
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the process.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"info"``. Unknown names
            fall back to ``INFO``.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        force=True,
    )
