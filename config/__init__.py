from config.config import Config
from config import constants
from config.logger import LOGGER_NAME, logger, setup_logging
from config.strings import Strings

__all__ = [
    "Config",
    "constants",
    "LOGGER_NAME",
    "logger",
    "setup_logging",
    "Strings",
]
