import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = 'survey_analytics'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'analytics.log'

_initialized = False

# Shared by every analytics module; handlers are attached by setup_logging()
logger = logging.getLogger(LOGGER_NAME)


def _file_handler(log_dir: Optional[str], formatter: logging.Formatter) -> logging.Handler:
    directory = Path(log_dir) if log_dir else Path(__file__).parent.parent / 'logs'
    directory.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(directory / LOG_FILE))
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: int = logging.INFO,
    name: str = LOGGER_NAME,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Configure console and file logging for the service.

    Safe to call more than once: a logger that already has handlers is
    returned unchanged. The file handler is optional; if the log directory
    cannot be created the service keeps logging to stdout.
    """
    global _initialized
    log = logging.getLogger(name)
    if _initialized and log.handlers:
        return log

    log.setLevel(level)
    for handler in list(log.handlers):
        log.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    log.addHandler(console)

    try:
        log.addHandler(_file_handler(log_dir, formatter))
    except OSError as e:  # pragma: no cover - filesystem issues
        log.error(f"Failed to create log file handler: {e}")

    _initialized = True
    return log
