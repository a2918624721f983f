"""
Logging utilities for the Compute Engine volume resizer.
"""

import logging
import sys
from typing import Optional

# Libraries that log every HTTP request at DEBUG
NOISY_LOGGERS = ("urllib3", "google.auth", "google.auth.transport.requests")


def setup_logging(
    verbose: bool = False, log_file: Optional[str] = "volume-resize.log"
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file, or None to log to stdout only

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(__name__)
