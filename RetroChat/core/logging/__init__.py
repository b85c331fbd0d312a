"""
Logging setup for RetroChat.

Every module asks for its own logger:

    from RetroChat.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Subscribed to %s", scope)

The root configuration is applied once, either explicitly with
``configure_logging(LogConfig(...))`` or from the ``RETROCHAT_ENV``
profile with ``auto_configure()``.
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass
class LogConfig:
    """
    Configuration for the logging system.

    Attributes:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        console_output: Whether to output to the console (stderr)
        file_output: Whether to output to a rotating file
        max_bytes: Maximum size of a log file before rotation
        backup_count: Number of rotated files to keep
        format_string: Custom format string for log records
        date_format: Date format for log records
        component_levels: Logger name -> level overrides
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name on terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def get_default_format() -> str:
    """Get the default log format string."""
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    """Get a format string that includes the call site."""
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


class LoggingManager:
    """
    Owns the handlers RetroChat installs on the root logger.

    A single instance exists per process so repeated configuration replaces
    handlers instead of stacking them.
    """

    _instance: Optional['LoggingManager'] = None
    _initialized: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._config: Optional[LogConfig] = None
        self._handlers: List[logging.Handler] = []
        self._initialized = True

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    def configure(self, config: LogConfig) -> None:
        """
        Install console and file handlers according to ``config``.

        Args:
            config: Logging configuration
        """
        self._config = config
        level = getattr(logging, config.level.upper())

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        if config.console_output:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level)
            console_handler.setFormatter(ColoredFormatter(
                config.format_string or get_default_format(), config.date_format
            ))
            self.add_handler(console_handler)

        if config.file_output:
            Path(config.log_dir).mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(config.log_dir, "retrochat.log"),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(
                config.format_string or get_detailed_format(), config.date_format
            ))
            self.add_handler(file_handler)

        for component, component_level in config.component_levels.items():
            logging.getLogger(component).setLevel(getattr(logging, component_level.upper()))

        logging.getLogger(__name__).debug("Logging configured with level %s", config.level)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

    def set_level(self, level: Union[str, int]) -> None:
        """Change the level of the root logger and every installed handler."""
        if isinstance(level, str):
            level = getattr(logging, level.upper())
        logging.getLogger().setLevel(level)
        for handler in self._handlers:
            handler.setLevel(level)

    def add_handler(self, handler: logging.Handler) -> None:
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def shutdown(self) -> None:
        """Flush and close all handlers."""
        logging.shutdown()


_logging_manager = LoggingManager()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return _logging_manager.get_logger(name)


def configure_logging(config: LogConfig) -> None:
    """Configure the logging system."""
    _logging_manager.configure(config)


def get_logging_manager() -> LoggingManager:
    """Get the process-wide logging manager."""
    return _logging_manager


def create_development_config() -> LogConfig:
    """Verbose console and file logging for local runs."""
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        format_string=get_detailed_format(),
        component_levels={
            "aiohttp": "WARNING",
            "asyncio": "WARNING",
        }
    )


def create_production_config() -> LogConfig:
    """File-only logging at INFO."""
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        max_bytes=20 * 1024 * 1024,
        backup_count=10,
        format_string=get_detailed_format(),
        component_levels={
            "aiohttp": "ERROR",
            "asyncio": "ERROR",
        }
    )


def create_testing_config() -> LogConfig:
    """Console-only logging used by the test-suite."""
    return LogConfig(
        level="DEBUG",
        console_output=True,
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={
            "asyncio": "WARNING",
        }
    )


def auto_configure(env: Optional[str] = None) -> None:
    """
    Configure logging from an environment profile.

    Args:
        env: development, production or testing. Read from RETROCHAT_ENV
             when omitted.
    """
    if env is None:
        env = os.environ.get("RETROCHAT_ENV", "development")
    env = env.lower()

    profiles = {
        "development": create_development_config,
        "dev": create_development_config,
        "production": create_production_config,
        "prod": create_production_config,
        "testing": create_testing_config,
        "test": create_testing_config,
    }
    configure_logging(profiles.get(env, create_development_config)())
    get_logger(__name__).info("Logging auto-configured for environment: %s", env)


__all__ = [
    'LogConfig',
    'LoggingManager',
    'ColoredFormatter',
    'get_logger',
    'configure_logging',
    'get_logging_manager',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
