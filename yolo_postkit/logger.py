"""Logging setup for the command-line scripts.

Library modules only call `logging.getLogger(__name__)`; configuring the
"yolo_postkit" logger here routes all of them.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logger(name: str = "yolo_postkit", level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a stdout handler (plus a file handler when `log_file` is given) to `name`.

    Calling it again replaces the handlers instead of stacking them.
    """
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
