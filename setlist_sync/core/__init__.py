"""
Core module for setlist-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Error taxonomy (configuration, transport, local lookups)
    - config: Configuration loading from config.yaml and the environment
    - logger: Logging system with console and run log files

Usage:
    from setlist_sync.core import (
        Config, load_config,
        setup_logging, get_logger,
        SetlistSyncError, ConfigurationError, TransportError
    )
"""

from setlist_sync.core.config import (
    Config,
    ConfirmationConfig,
    EndpointConfig,
    LoggingConfig,
    NetworkConfig,
    load_config,
)
from setlist_sync.core.exceptions import (
    ConfigurationError,
    NotFoundLocally,
    PayloadShapeError,
    SetlistSyncError,
    TransportError,
)
from setlist_sync.core.logger import (
    get_logger,
    log_unconfirmed_write,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "ConfirmationConfig",
    "EndpointConfig",
    "LoggingConfig",
    "NetworkConfig",
    "load_config",
    # Exceptions
    "SetlistSyncError",
    "ConfigurationError",
    "TransportError",
    "PayloadShapeError",
    "NotFoundLocally",
    # Logger
    "setup_logging",
    "get_logger",
    "log_unconfirmed_write",
    "shutdown_logging",
]
