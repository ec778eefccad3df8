import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from . import settings

# Dedicated channels so best-effort fallbacks can be filtered out of the
# ordinary warning stream.
UNMAPPED_SKU_LOGGER = "channel_sync.unmapped_sku"
ENCODING_LOGGER = "channel_sync.encoding"
FALLBACK_LOGGERS = (UNMAPPED_SKU_LOGGER, ENCODING_LOGGER)

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5 MB


def _file_handler(filename: str, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        settings.LOG_DIR / filename, maxBytes=MAX_LOG_BYTES, backupCount=3, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logger(name: Optional[str] = None, log_level: int = settings.LOG_LEVEL) -> logging.Logger:
    """
    Console output stays message-only; everything also goes to logs/app.log.
    Unmapped SKUs and encoding fallbacks are additionally collected in
    logs/fallbacks.log so they can be reviewed and fixed in one place.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Prevent adding handlers multiple times if logger is already set up
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.addHandler(_file_handler("app.log", log_level))

    fallbacks = _file_handler("fallbacks.log", logging.WARNING)
    for fallback_name in FALLBACK_LOGGERS:
        logging.getLogger(fallback_name).addHandler(fallbacks)

    return logger
