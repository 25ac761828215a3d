"""Project logger: one file handler plus the console, shared by every module."""

import logging
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str = "sentimeter",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Return the ``name`` logger, attaching handlers on first use only.

    Args:
        name (str): Logger name.
        log_file (str): Log file path. Defaults to ``$SENTIMETER_LOG_FILE`` or
            ``output/sentimeter.log``; an empty string disables the file handler.
        level (str): Level name. Defaults to ``$SENTIMETER_LOG_LEVEL`` or INFO.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(name)
    if logger.hasHandlers():
        return logger

    if log_file is None:
        log_file = os.getenv("SENTIMETER_LOG_FILE", "output/sentimeter.log")
    level_name = (level or os.getenv("SENTIMETER_LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


logger = setup_logger()
