"""
Logging configuration for the backtest and optimizer.

Library modules call get_logger(__name__) and never attach handlers; entry
points call setup_logger once to route output to the console and a dated file.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path


LOG_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(message)s'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


def setup_logger(
    name: str,
    log_dir: str = "logs",
    level: int = logging.INFO,
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Set up a logger with file and console handlers.

    Args:
        name: Logger name (use "src" to capture every core module)
        log_dir: Directory to store log files
        level: Logging level
        log_to_file: If False, only the console handler is attached

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    console_formatter = logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S')
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # One file per day
        date_str = datetime.now().strftime('%Y-%m-%d')
        file_handler = logging.FileHandler(
            log_path / f"{name}_{date_str}.log",
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get an existing logger or create a new one."""
    return logging.getLogger(name)
