import logging
import sys
from logging import Logger
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _has_handler(logger: Logger, cls, filename: Optional[str] = None) -> bool:
    for h in logger.handlers:
        if type(h) is not cls:
            continue
        if filename is None:
            return True
        base = getattr(h, "baseFilename", None)
        if base and str(base).endswith(str(filename)):
            return True
    return False


def setup_logging(level: str | int = logging.INFO, logfile: Optional[str] = None) -> Logger:
    """Configure the ``bookkeeper`` logger to stream to stdout and optionally a rotating file.

    Idempotent: calling it again (e.g. once per app created in tests) does not
    duplicate handlers.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("bookkeeper")
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT)

    if not _has_handler(logger, logging.StreamHandler):
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    if logfile and not _has_handler(logger, RotatingFileHandler, filename=logfile):
        fh = RotatingFileHandler(logfile, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger
