"""Configuration module for Router Monitor.

Provides centralized configuration, logging and exceptions.
"""
from config.constants import (
    ALERTS,
    INTERVALS,
    NETWORK,
    STORAGE,
    THRESHOLDS,
    AlertConfig,
    Intervals,
    NetworkConfig,
    StorageConfig,
    Thresholds,
)
from config.exceptions import (
    AuthenticationFailure,
    BackendError,
    ConfigurationError,
    ConnectivityFailure,
    NotificationFailure,
    PersistenceFailure,
    ProtocolError,
    RouterMonitorError,
)
from config.logging_config import LogContext, get_logger, log_exception, setup_logging

__all__ = [
    # Constants
    "INTERVALS",
    "THRESHOLDS",
    "STORAGE",
    "NETWORK",
    "ALERTS",
    "Intervals",
    "Thresholds",
    "StorageConfig",
    "NetworkConfig",
    "AlertConfig",
    # Exceptions
    "RouterMonitorError",
    "BackendError",
    "AuthenticationFailure",
    "ConnectivityFailure",
    "ProtocolError",
    "PersistenceFailure",
    "NotificationFailure",
    "ConfigurationError",
    # Logging
    "setup_logging",
    "get_logger",
    "log_exception",
    "LogContext",
]
