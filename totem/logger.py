# Digital Totem Logging
# Root logger setup shared by the tracker app and scripts

import logging

from .config import LOG_LEVEL, LOG_FORMAT


def setup_logging(level=None, log_file=None):
    """Configure the root logger once.

    Console output always; a file handler as well when log_file is given.
    """
    logger = logging.getLogger()
    logger.setLevel(level or LOG_LEVEL)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
