"""
Logging configuration with rotation support.
Connector and reconciler loggers are children of "inventory_recon", so the
handlers set up here receive their records.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional


NOISY_LOGGERS = ('ldap3', 'aiohttp', 'asyncio', 'matplotlib', 'PIL')


class SecretMaskingFilter(logging.Filter):
    """Replace known secret values in log messages with '***'."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        for secret in self.secrets:
            message = message.replace(secret, '***')
        record.msg = message
        record.args = None
        return True


def setup_logger(
    name: str = "inventory_recon",
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 50,
    backup_count: int = 7,
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    secrets: Iterable[str] = ()
) -> logging.Logger:
    """
    Set up the application logger with console and optional file handlers.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None for console only)
        max_size_mb: Maximum log file size before rotation
        backup_count: Number of backup files to keep
        log_format: Log message format
        secrets: Values to mask in every handler's output

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    numeric_level = getattr(logging, level.upper())
    logger.setLevel(numeric_level)

    if logger.handlers:
        logger.handlers.clear()

    formatter = logging.Formatter(log_format)
    masking = SecretMaskingFilter(secrets)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(numeric_level)
    console_handler.addFilter(masking)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(numeric_level)
        file_handler.addFilter(masking)
        logger.addHandler(file_handler)

    # library debug output is only wanted when debugging the run itself
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(
            logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
        )

    return logger
