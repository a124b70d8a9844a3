# compliance_engine/logging_config.py
"""
Logging configuration for the compliance engine.

Every module logs through the shared ``compliance_engine`` logger exported here.
"""

import logging
import os
import sys
from typing import Optional

from .config import get_settings

LOGGER_NAME = "compliance_engine"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the engine logger.

    Console output always; a file handler only when a log file is configured.
    Safe to call more than once: existing handlers are replaced, not stacked.
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    log_file = log_file if log_file is not None else settings.log_file

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = configure_logging()
