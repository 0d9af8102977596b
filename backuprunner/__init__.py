import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '0.1.0'


def configure_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """Configure process logging and return the runner logger"""

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quiet chatty libraries
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.WARNING))
    logging.getLogger('botocore').setLevel(max(log_level, logging.WARNING))

    logger = logging.getLogger('backuprunner')
    logger.setLevel(log_level)
    logger.info("Logging configured (level: %s)", logging.getLevelName(log_level))
    return logger
