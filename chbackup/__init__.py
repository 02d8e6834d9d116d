import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '0.4.0'


def configure_logging(config):
    """
    Configure logging for backup operations.

    Installs a console handler and a rotating file handler on the root logger.

    Args:
        config: Configuration object (see chbackup.config)
    """
    log_dir = config.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    # DEBUG flag wins over LOG_LEVEL
    if getattr(config, 'DEBUG', False):
        log_level = logging.DEBUG
    else:
        log_level = logging.getLevelName(str(config.LOG_LEVEL).upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'chbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # botocore and paramiko are very chatty at DEBUG
    for noisy in ('botocore', 'boto3', 's3transfer', 'paramiko', 'urllib3', 'azure'):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")
