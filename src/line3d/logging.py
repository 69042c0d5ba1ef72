import logging
import sys
from logging.handlers import RotatingFileHandler


logger = logging.getLogger("line3d")
logger.propagate = False  # Prevent propagation to avoid double logging
logger.addHandler(logging.NullHandler())  # Default null handler


def configure_logger(
    level=logging.INFO,
    log_format="[line3d] %(levelname)s - %(module)s: %(message)s",
    date_format="%Y-%m-%d %H:%M:%S",
    file_path=None,
    file_max_bytes=10485760,  # 10MB
    file_backup_count=3,
    stream=sys.stderr,
    propagate=False,
):
    """
    Configure the package logger with handlers similar to basicConfig.
    This does NOT use basicConfig() and only affects this package's logger.
    """
    # Clear any existing handlers
    for handler in logger.handlers[:]:
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)

    logger.propagate = propagate
    logger.setLevel(level)

    if stream:
        console_handler = logging.StreamHandler(stream)
        console_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(console_handler)

    if file_path:
        file_handler = RotatingFileHandler(
            file_path, maxBytes=file_max_bytes, backupCount=file_backup_count
        )
        file_handler.setFormatter(
            logging.Formatter(f"%(asctime)s - {log_format}", date_format)
        )
        logger.addHandler(file_handler)

    return logger
