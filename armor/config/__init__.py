"""
Configuration for Armor Daemon.
"""

from .enforcer_config import (
    EnforcerConfig,
    ConfigError,
    load_config,
)

__all__ = [
    'EnforcerConfig',
    'ConfigError',
    'load_config',
]
