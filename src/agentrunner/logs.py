import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .settings import get_settings

PACKAGE_LOGGER = "agentrunner"


def setup_logging(name: str, filename: str, max_bytes: int = 2_000_000) -> logging.Logger:
    """Configure the package logger and return the named entry-point logger.

    Handlers (stderr + rotating file under ``log_dir``) are attached to the
    ``agentrunner`` logger so records from every library module end up in the
    same place. Idempotent: once the package logger has handlers, nothing is
    added again.
    """
    logger = logging.getLogger(name)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.handlers:
        return logger

    settings = get_settings()
    logs_dir = Path(settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    package_logger.setLevel(settings.log_level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    package_logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / filename, maxBytes=max_bytes, backupCount=3)
    fh.setFormatter(fmt)
    package_logger.addHandler(fh)

    return logger
