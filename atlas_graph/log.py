import logging
import os
from datetime import datetime

LOGGER_NAME = "atlas_graph"


def setup_logger(log_dir: str = ".atlas-graph/logs",
                 level: int = logging.DEBUG) -> logging.Logger:
    """Attach a timestamped file handler to the package logger.

    Every module logs through ``logging.getLogger(__name__)``, so records
    from the whole package end up in the file.  Calling this twice with the
    same directory does not add a second handler.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    target_dir = os.path.abspath(log_dir)
    for handler in logger.handlers:
        if (isinstance(handler, logging.FileHandler)
                and os.path.dirname(handler.baseFilename) == target_dir):
            return logger

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"atlas_graph_{timestamp}.log")

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)
    return logger
