"""Logging configuration for megarepo"""
import logging
import sys
from pathlib import Path


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log levels in terminal output."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        """Format log record with colors if in a terminal."""
        if sys.stderr.isatty():
            levelname = record.levelname
            if levelname in self.COLORS:
                record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        return super().format(record)


def get_log_dir() -> Path:
    """Directory holding the debug log. Kept out of the store so GC never sees it."""
    return Path.home() / '.local' / 'state' / 'megarepo'


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, show INFO level messages
        debug: If True, show DEBUG level messages and write a log file
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if debug:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / 'megarepo.log', mode='w')  # Overwrite each run
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if debug:
        formatter = ColoredFormatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = ColoredFormatter(fmt='[%(name)s] %(message)s')
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # GitPython logs every command at DEBUG; keep that out of -v output
    if not debug:
        logging.getLogger('git').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance
    """
    # Strip the package prefix for cleaner log names
    if name.startswith('megarepo.'):
        name = name.replace('megarepo.', '', 1)
    if name.startswith('services.'):
        name = name.replace('services.', '', 1)

    return logging.getLogger(name)
