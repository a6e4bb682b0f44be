"""Logging configuration for the butleradm package."""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

NOISY_LOGGERS = ('urllib3', 'kubernetes')


def setup_logging(debug_mode: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for a CLI invocation.

    Args:
        debug_mode: Log at DEBUG instead of LOG_LEVEL (default INFO)
        log_file: Optional file to mirror log output into (defaults to
            the BUTLER_LOG_FILE environment variable)
    """
    if debug_mode:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = log_file or os.getenv("BUTLER_LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def log_phase(logger: logging.Logger, title: str) -> None:
    """Log a bootstrap phase transition."""
    logger.info(f"▶ {title}")
