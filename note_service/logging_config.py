"""
logging_config.py — Centralized Logging Configuration for the Note Service

Sets up one logging configuration shared by the API, the workflow and the clients.
It ensures that all modules log messages consistently to the console and,
when configured, to a file.

Features:
    • Console logging, optionally combined with file logging
    • Process ID in every line, so uvicorn workers can be told apart
    • One format for every module logger
    • Reduced verbosity for external dependencies (httpx, SQLAlchemy)
"""

import logging
import sys
from typing import Optional


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Installs the root handlers and format for the note service.

    The configuration includes:
        - Log level: taken from `level` (default INFO)
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/serverless compatible
            2. File: `log_file`, only when given
        - Reduced verbosity for third-party libraries such as httpx

    Args:
        level (str): Name of the root log level (e.g. "DEBUG", "INFO").
        log_file (str | None): Optional path of a persistent log file.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
    )

    # Reduce verbosity from external libraries
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns the logger for a module; handlers come from `setup_logging`.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
