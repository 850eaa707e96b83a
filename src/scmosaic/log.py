import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional


def setup_logging(level: str = "INFO", out_dir: Optional[str] = None) -> logging.Logger:
    """Configure the ``scmosaic`` logger for scripts.

    Library modules only create child loggers; nothing is printed until an
    application calls this (or configures logging itself).

    Args:
        level: Logging level name.
        out_dir: If given, also write ``scmosaic.log`` there.

    Returns:
        The package logger.
    """
    logger = logging.getLogger("scmosaic")
    if logger.handlers:
        return logger
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)s:%(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if out_dir is not None:
        os.makedirs(out_dir, exist_ok=True)
        fh = RotatingFileHandler(
            os.path.join(out_dir, "scmosaic.log"), maxBytes=5 * 1024 * 1024, backupCount=3
        )
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    logger.propagate = False
    return logger
