"""Centralized logging configuration for the ledger backend.

This module provides structured logging with context fields for sync,
credential and auth operations. Logs always go to the console (container
logs) and, when LOG_DIR is set, to rotating files as well.

Usage:
    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Sync finished", extra={'trace_id': trace_id, 'owner_id': owner_id})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

CONTEXT_FIELDS = ("trace_id", "owner_id", "item_id")


class StructuredFormatter(logging.Formatter):
    """Formatter that fills missing context fields with None.

    Supports the following context fields via extra={} parameter:
    - trace_id: request trace id
    - owner_id: tenant the work runs for
    - item_id: aggregator item of the credential being processed
    """

    def format(self, record):
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger.

    Creates a logger with:
    - Console handler (INFO level)
    - Rotating file handler for all levels, if LOG_DIR is set
    - Separate error file handler, if LOG_DIR is set

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # ========================================
    # Console Handler
    # ========================================
    console = logging.StreamHandler()
    console.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    console.setFormatter(
        StructuredFormatter("[%(levelname)s] [trace:%(trace_id)s] %(name)s: %(message)s")
    )
    logger.addHandler(console)

    log_dir = os.getenv("LOG_DIR")
    if not log_dir:
        return logger

    os.makedirs(log_dir, exist_ok=True)
    file_format = StructuredFormatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] "
        "[trace:%(trace_id)s owner:%(owner_id)s item:%(item_id)s] %(message)s"
    )

    # ========================================
    # File Handler (rotating, all levels)
    # ========================================
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "ledger.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    # ========================================
    # Error File Handler (errors only)
    # ========================================
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, "ledger_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    return logger
