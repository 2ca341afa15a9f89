"""
Logging configuration for the paper trading engine
"""

import sys
from typing import Optional

from loguru import logger


def setup_logger(
    log_file: Optional[str] = "gamma_paper.log",
    log_level: str = "INFO",
    rotation: str = "10 MB",
    retention: str = "1 week"
) -> None:
    """
    Configure loguru logger with console and optional file output

    Args:
        log_file: Path to log file (None disables the file sink)
        log_level: Minimum log level
        rotation: When to rotate log files
        retention: How long to keep old log files
    """
    # Remove default logger
    logger.remove()

    logger.add(
        sys.stdout,
        level=log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
               "<level>{message}</level>",
        colorize=True
    )

    if log_file:
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation=rotation,
            retention=retention,
            compression="zip"
        )

    logger.info(f"Logger configured: level={log_level}, file={log_file}")
