import logging
import sys
from typing import Optional
from pathlib import Path

from app.core.config import settings

def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    service_name: str = "lumina-minutes"
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        service_name: Service name for log formatting

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, level.upper()))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            log_data = {
                'timestamp': self.formatTime(record),
                'level': record.levelname,
                'logger': record.name,
                'function': f"{record.funcName}:{record.lineno}",
                'message': record.getMessage(),
                'service': service_name
            }

            for field in ('request_id', 'client_ip', 'policy', 'provider', 'recipient'):
                if hasattr(record, field):
                    log_data[field] = getattr(record, field)

            return f"[{record.levelname}] {record.getMessage()} | {log_data}"

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger

# Initialize default logger
logger = setup_logging(level=settings.log_level, log_file=settings.log_file)
