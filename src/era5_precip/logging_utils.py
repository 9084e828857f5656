"""
Logging setup for the command line entry point.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
NOISY_LOGGERS = ("rasterio", "fiona", "pyogrio", "distributed")


def setup_logging(level: str = "INFO", log_file: Optional[str | Path] = None, verbose: bool = False) -> None:
    """
    Configure the root logger.

    Parameters
    ----------
    level:
        Level name such as ``'INFO'``; ignored when ``verbose`` is set.
    log_file:
        Optional file that receives the same records as the console.
    verbose:
        Force DEBUG output.
    """
    if verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, str(level).upper(), logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
