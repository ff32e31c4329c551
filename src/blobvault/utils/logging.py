"""
Logging Utilities

Configures the ``blobvault`` logger hierarchy used by every module
(``logging.getLogger(__name__)``) with support for:
- Configurable log levels (DEBUG, INFO, WARNING, ERROR)
- Optional file output
- Debug mode with verbose output
- Masking of secrets before they reach a log line

Log Format:
    %(asctime)s - %(name)s - %(levelname)s - %(message)s

Environment:
    BLOBVAULT_LOG_LEVEL: default level (INFO)
    BLOBVAULT_LOG_FILE: optional log file path
    BLOBVAULT_DEBUG: 'true'/'1'/'yes' enables DEBUG everywhere
"""

import logging
import os
import sys
from typing import Optional


ROOT_LOGGER_NAME = "blobvault"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LOG_LEVEL = os.getenv("BLOBVAULT_LOG_LEVEL", "INFO").upper()
_LOG_FILE = os.getenv("BLOBVAULT_LOG_FILE", None)
_DEBUG_MODE = os.getenv("BLOBVAULT_DEBUG", "").lower() in ("true", "1", "yes")

_root_configured = False
_root_logger: Optional[logging.Logger] = None


def _configure_root_logger() -> logging.Logger:
    """
    Configure the root blobvault logger.

    Sets up handlers for console and optionally file output. Handlers from a
    previous configuration are removed so repeated calls do not duplicate
    output.
    """
    global _root_configured, _root_logger

    if _root_configured and _root_logger is not None:
        return _root_logger

    _root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(_root_logger.handlers):
        _root_logger.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if _DEBUG_MODE else getattr(logging, _LOG_LEVEL, logging.INFO)
    _root_logger.setLevel(level)
    _root_logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    _root_logger.addHandler(console_handler)

    if _LOG_FILE:
        try:
            os.makedirs(os.path.dirname(_LOG_FILE) or ".", exist_ok=True)
            file_handler = logging.FileHandler(_LOG_FILE)
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            _root_logger.addHandler(file_handler)
        except OSError as e:
            _root_logger.warning(f"Failed to create log file {_LOG_FILE}: {e}")

    _root_configured = True
    return _root_logger


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    debug: bool = False,
) -> logging.Logger:
    """
    Setup logging configuration for blobvault.

    Should be called once at application startup (the CLI does this).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output
        debug: Enable debug mode (verbose output)

    Returns:
        Configured root logger

    Example:
        >>> setup_logging(level="DEBUG", log_file="blobvault.log")
    """
    global _root_configured, _LOG_LEVEL, _LOG_FILE, _DEBUG_MODE

    _root_configured = False
    _LOG_LEVEL = level.upper()
    _LOG_FILE = log_file
    _DEBUG_MODE = debug

    return _configure_root_logger()


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a secret for logging, keeping only the last few characters.

    Example:
        >>> mask_secret("supersecretkey")
        '**********tkey'
    """
    if not value:
        return "<unset>"
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
