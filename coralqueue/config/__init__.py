"""Configuration management for the notification queue service."""

from .duration import DurationParseError, parse_duration
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_app_config, load_config
from .models import (
    DEFAULT_MERGE_POLICIES,
    ApiConfig,
    AppConfig,
    BackoffConfig,
    BatchingConfig,
    EmailConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    QueueConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "load_app_config",
    "load_environment_config",
    "parse_duration",
    # Configuration models
    "AppConfig",
    "QueueConfig",
    "BackoffConfig",
    "BatchingConfig",
    "EmailConfig",
    "LoggingConfig",
    "ApiConfig",
    "EnvironmentConfig",
    "DEFAULT_MERGE_POLICIES",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
    "DurationParseError",
]
