# ABOUTME: Configuration package initialization
# ABOUTME: Exports configuration classes and logging helpers for the library

from faas_middleware.config.settings import CoreSettings, get_settings
from faas_middleware.config.logging import (
    LoggerConfig,
    LoggingSettings,
    setup_logging,
    get_logger,
    configure_for_testing,
    configure_for_production,
    configure_for_development,
    configure_from_settings,
)

__all__ = [
    "CoreSettings",
    "get_settings",
    "LoggerConfig",
    "LoggingSettings",
    "setup_logging",
    "get_logger",
    "configure_for_testing",
    "configure_for_production",
    "configure_for_development",
    "configure_from_settings",
]
