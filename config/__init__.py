"""
Authorization Engine Configuration Module

Provides centralized configuration management for the authorization engine.
"""

from .schema import (
    AuthzConfig,
    CacheConfig,
    TokenConfig,
    AuthzServiceConfig,
    BootstrapConfig,
    LoggingConfig,
)
from .loader import load_config, load_config_from_file, create_default_config

__all__ = [
    "AuthzConfig",
    "CacheConfig",
    "TokenConfig",
    "AuthzServiceConfig",
    "BootstrapConfig",
    "LoggingConfig",
    "load_config",
    "load_config_from_file",
    "create_default_config",
]
