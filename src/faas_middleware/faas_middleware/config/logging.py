# ABOUTME: Loguru configuration for the middleware pipeline library
# ABOUTME: Console sink for function runtimes plus opt-in rotated text and JSONL file sinks

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from faas_middleware.config.settings import CoreSettings, get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


class LoggerConfig(BaseModel):
    """Sinks the library installs on the global loguru logger."""

    # Function runtimes collect stdout, so the console is the primary sink
    console_enabled: bool = True
    console_level: str = "INFO"
    console_colorize: bool = True
    console_serialize: bool = False
    console_backtrace: bool = True
    console_diagnose: bool = True

    # Rotated text file, opt-in
    file_enabled: bool = False
    file_level: str = "DEBUG"
    file_path: Union[str, Path] = "logs/faas-middleware.log"

    # One JSON record per line, opt-in
    structured_enabled: bool = False
    structured_level: str = "DEBUG"
    structured_path: Union[str, Path] = "logs/faas-middleware-structured.jsonl"

    rotation: str = "100 MB"
    retention: str = "30 days"
    compression: str = "gz"

    enqueue: bool = False
    catch: bool = True


class LoggingSettings(BaseSettings):
    """Sink settings read from ``FAAS_MIDDLEWARE_*`` environment variables."""

    log_level: str = "INFO"
    log_file_enabled: bool = False
    log_file_path: str = "logs/faas-middleware.log"
    log_structured_enabled: bool = False
    log_console_colorize: bool = True

    model_config = SettingsConfigDict(env_prefix="FAAS_MIDDLEWARE_")

    def to_config(self) -> LoggerConfig:
        return LoggerConfig(
            console_level=self.log_level,
            console_colorize=self.log_console_colorize,
            file_enabled=self.log_file_enabled,
            file_path=self.log_file_path,
            file_level=self.log_level,
            structured_enabled=self.log_structured_enabled,
            structured_level=self.log_level,
        )


def _add_file_sink(config: LoggerConfig, path: Union[str, Path], level: str, serialize: bool) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        level=level,
        format="{message}" if serialize else FILE_FORMAT,
        serialize=serialize,
        rotation=config.rotation,
        retention=config.retention,
        compression=config.compression,
        enqueue=config.enqueue,
        catch=config.catch,
    )


def setup_logging(config: Optional[LoggerConfig] = None) -> None:
    """
    Replace every loguru handler with the sinks described by ``config``.

    Args:
        config: Sink configuration. Read from ``LoggingSettings`` when None.
    """
    if config is None:
        config = LoggingSettings().to_config()

    logger.remove()
    # Records logged without bind(name=...) still render in the console format
    logger.configure(extra={"name": "faas_middleware"})

    if config.console_enabled:
        logger.add(
            sys.stdout,
            level=config.console_level,
            format="{message}" if config.console_serialize else CONSOLE_FORMAT,
            colorize=config.console_colorize and not config.console_serialize,
            serialize=config.console_serialize,
            backtrace=config.console_backtrace,
            diagnose=config.console_diagnose,
            enqueue=config.enqueue,
            catch=config.catch,
        )
    if config.file_enabled:
        _add_file_sink(config, config.file_path, config.file_level, serialize=False)
    if config.structured_enabled:
        _add_file_sink(config, config.structured_path, config.structured_level, serialize=True)


def get_logger(name: str):
    """
    Get a logger bound to ``name``.

    Args:
        name: Logger name (typically __name__)
    """
    return logger.bind(name=name)


def configure_for_testing() -> None:
    """Verbose, undecorated console output that surfaces sink errors."""
    setup_logging(LoggerConfig(console_level="DEBUG", console_backtrace=False, console_diagnose=False, catch=False))


def configure_for_development() -> None:
    setup_logging(LoggerConfig(console_level="DEBUG"))


def configure_for_production() -> None:
    """JSON console records without colors or variable dumps."""
    setup_logging(
        LoggerConfig(
            console_colorize=False,
            console_serialize=True,
            console_backtrace=False,
            console_diagnose=False,
        )
    )


def configure_from_settings(settings: Optional[CoreSettings] = None) -> LoggerConfig:
    """
    Configure logging from the library settings.

    The environment picks the profile, then LOG_LEVEL and LOG_FORMAT override it.

    Args:
        settings: Settings to read. Defaults to the cached `get_settings()` instance.

    Returns:
        The LoggerConfig that was applied.
    """
    settings = settings or get_settings()
    production = settings.ENV == "production"

    config = LoggerConfig(
        console_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        console_colorize=not production,
        console_serialize=settings.LOG_FORMAT == "json",
        console_backtrace=not production,
        console_diagnose=not production,
    )
    setup_logging(config)
    return config
