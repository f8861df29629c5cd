#!/usr/bin/env python3
"""
Logs module for the HPCA Benchmark Scheduler.

In verbose mode, log messages go both to stdout and to a log file below the
base directory; otherwise they are discarded. User-facing messages (errors,
results) are printed and never depend on this setup.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "hpcabench"
LOG_DIR_NAME = "logs"
LOG_FILE_NAME = "hpcabench-run.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def log_file_path(basedir: str) -> Path:
    return Path(basedir) / LOG_DIR_NAME / LOG_FILE_NAME


def setup_logging(verbose: bool, basedir: Optional[str] = None) -> Optional[Path]:
    """
    Set up logging for the package.

    Args:
        verbose: Log to stdout and to the log file; discard logs otherwise
        basedir: Directory below which the log file is created

    Returns:
        Path of the log file, None when no log file is written
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear handlers from a previous setup
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.propagate = False
    if not verbose:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return None

    handlers = [logging.StreamHandler(sys.stdout)]
    log_path = None
    if basedir:
        log_path = log_file_path(basedir)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(str(log_path)))
        except OSError as e:
            print(f"WARNING: unable to open log file {log_path}: {e}")
            log_path = None

    logger.setLevel(logging.DEBUG)
    for handler in handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)
    return log_path
