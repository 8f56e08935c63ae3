"""
Logging utilities for storybook-eyes
"""

import logging
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
ROOT_LOGGER = 'storybook_eyes'


def resolve_log_level(show_logs: Union[bool, str, None]) -> int:
    """Map the show_logs setting (False, True or 'verbose') to a logging level"""
    if isinstance(show_logs, str):
        if show_logs.lower() == 'verbose':
            return logging.DEBUG
        return logging.INFO if show_logs.lower() in ('true', 'info') else logging.WARNING
    return logging.INFO if show_logs else logging.WARNING


def setup_logging(show_logs: Union[bool, str, None] = True, stream=None,
                  log_file: Optional[str] = None):
    """Setup application logging"""
    log_level = resolve_log_level(show_logs)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    logger = logging.getLogger(ROOT_LOGGER)
    # Re-running setup (tests, repeated CLI calls) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(log_level)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        logger.addHandler(file_handler)

    logger.debug(f"Logging system initialized at level {logging.getLevelName(log_level)}")
    return logger


def get_logger(name):
    """Get a logger instance for a specific module"""
    return logging.getLogger(name)
