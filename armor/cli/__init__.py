"""
CLI Module for Armor Daemon

Provides command-line tools for managing AppArmor profiles:
- armorctl: compile, apply, sweep and list profiles

Usage:
    python -m armor.cli.armorctl compile policy.yaml
    python -m armor.cli.armorctl list
"""

from .armorctl import ArmorCLI, main as armorctl_main

__all__ = [
    'ArmorCLI',
    'armorctl_main',
]
