from __future__ import annotations

import logging
import pathlib
from typing import Optional

from .config import LOG_FILE_PATH

LOG_NAME = "conformance_viz"


def configure_logging(log_file: Optional[pathlib.Path] = None) -> logging.Logger:
    logger = logging.getLogger(LOG_NAME)
    if not logger.handlers:
        target = log_file or LOG_FILE_PATH
        logger.setLevel(logging.INFO)
        file_handler = logging.FileHandler(target, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.propagate = False
        logger.info("Logging initialised. Writing to %s", target)
    return logger


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(LOG_NAME).getChild(component)
