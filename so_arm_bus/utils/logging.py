import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class BusLoggerSetup:
    _initialized = False

    @classmethod
    def setup(cls,
              log_dir: str = "logs",
              console_level: int = logging.INFO,
              file_level: int = logging.DEBUG,
              log_to_file: bool = True) -> None:
        """
        Configure the root logger for the servo bus tools.
        Should be called once at application startup.

        Args:
            log_dir: Directory where log files will be stored
            console_level: Logging level for console output
            file_level: Logging level for file output
            log_to_file: Set False to log to the console only
        """
        if cls._initialized:
            return

        formatter = logging.Formatter(LOG_FORMAT)

        root_logger = logging.getLogger()
        root_logger.setLevel(min(console_level, file_level) if log_to_file else console_level)

        # Remove any existing handlers
        root_logger.handlers = []

        if log_to_file:
            if not os.path.exists(log_dir):
                os.makedirs(log_dir)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = os.path.join(log_dir, f"so_arm_{timestamp}.log")

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(file_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        cls._initialized = True

    @classmethod
    def reset(cls) -> None:
        cls._initialized = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Name of the module/class (typically __name__)

    Returns:
        logging.Logger: Logger instance
    """
    return logging.getLogger(name)


LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}


def get_log_level(default_level: int = logging.INFO) -> int:
    """Get log level from SO_ARM_LOG_LEVEL or return default"""
    level_name = os.environ.get('SO_ARM_LOG_LEVEL', '').upper()
    return LOG_LEVELS.get(level_name, default_level)
