import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

logger = logging.getLogger(__name__)


def configure_logging(logging_config):
    """
    Configure process logging.

    Args:
        logging_config: LoggingConfig with level and optional log file settings
    """
    log_level = getattr(logging, logging_config.level.upper(), logging.INFO)

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # File handler
    if logging_config.file:
        log_dir = os.path.dirname(os.path.abspath(logging_config.file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            logging_config.file,
            maxBytes=logging_config.max_bytes,
            backupCount=logging_config.backup_count
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quiet chatty client libraries
    for name in ('botocore', 'boto3', 's3transfer', 'urllib3', 'paramiko'):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
