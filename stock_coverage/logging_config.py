"""
Logging configuration for command-line runs.

The engine modules only create module loggers; handlers are installed here,
by the CLI, so library callers keep control of their own output.
"""
import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

APP_LOG_FILE = 'app.log'
ERROR_LOG_FILE = 'errors.log'


class ErrorFilter(logging.Filter):
    def filter(self, record):
        return record.levelno >= logging.ERROR


def setup_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[Path] = None) -> None:
    """
    Configure the root logger.

    Parameters:
    -----------
    level : int or str
        Logging level (default: INFO)
    log_dir : Path, optional
        If given, also write app.log and errors.log into this directory
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Re-running setup (e.g. repeated CLI invocations in tests) must not stack handlers
    for handler in list(root_logger.handlers):
        if getattr(handler, '_stock_coverage', False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_dir / APP_LOG_FILE, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

        error_handler = logging.FileHandler(log_dir / ERROR_LOG_FILE, encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.addFilter(ErrorFilter())
        error_handler.setFormatter(formatter)
        handlers.append(error_handler)

    for handler in handlers:
        handler._stock_coverage = True
        root_logger.addHandler(handler)

    # joblib workers are chatty at DEBUG
    logging.getLogger('joblib').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
