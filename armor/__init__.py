"""
Armor Daemon - AppArmor profile management for containers
"""

# Installs ArmorLogger as the logger class before any module logger exists
from . import logging_config

from .constants import (
    Paths,
    Commands,
    Timeouts,
    UNCONFINED_PROFILES,
)

__version__ = "1.0.0"

__all__ = [
    'logging_config',
    'Paths',
    'Commands',
    'Timeouts',
    'UNCONFINED_PROFILES',
]
