"""
Centralized Constants Module for Armor Daemon.

Consolidates paths, command names, timeouts and sentinel values used by the
AppArmor enforcer so they can be audited in one place and overridden from
the environment where that is safe.

Usage:
    from armor.constants import Paths, Timeouts, Commands

    loader = AppArmorParserLoader(Commands.APPARMOR_PARSER, Timeouts.LOADER_DEFAULT)
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')

ENV_PREFIX = "ARMOR_"


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
    min_value: Optional[T] = None,
    max_value: Optional[T] = None,
) -> T:
    """Get a configuration value with environment variable override.

    Args:
        env_var: Environment variable name (will be prefixed with ARMOR_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function
        min_value: Optional minimum allowed value
        max_value: Optional maximum allowed value

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"{ENV_PREFIX}{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if min_value is not None and converted < min_value:
            logger.warning(
                f"{full_env_var}={env_value} below minimum {min_value}, using default"
            )
            return default
        if max_value is not None and converted > max_value:
            logger.warning(
                f"{full_env_var}={env_value} above maximum {max_value}, using default"
            )
            return default

        if validator is not None and not validator(converted):
            logger.warning(
                f"{full_env_var}={env_value} failed validation, using default"
            )
            return default

        logger.info(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


def parse_bool(value: str) -> bool:
    """Parse the usual truthy/falsy environment spellings."""
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off', ''):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# =============================================================================
# PATHS
# =============================================================================

@dataclass(frozen=True)
class Paths:
    """Filesystem locations touched by the enforcer."""
    APPARMOR_PROFILE_DIR: str = "/etc/apparmor.d"
    SECURITYFS_MOUNT: str = "/sys/kernel/security"
    CONFIG_FILE: str = "/etc/armor-daemon/config.yaml"


# =============================================================================
# EXTERNAL COMMANDS
# =============================================================================

@dataclass(frozen=True)
class Commands:
    """External binaries invoked through the command helper."""
    APPARMOR_PARSER: str = "apparmor_parser"
    MOUNT: str = "mount"

    # apparmor_parser flags
    PARSER_RELOAD: str = "-r"
    PARSER_WRITE_CACHE: str = "-W"
    PARSER_REMOVE: str = "-R"


# =============================================================================
# TIMEOUTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """
    Timeout values in seconds.

    apparmor_parser compiles the profile into a DFA before loading it, which
    can take a while for large rule sets.
    """
    LOADER_DEFAULT: float = 30.0
    LOADER_MIN: float = 1.0
    LOADER_MAX: float = 600.0
    MOUNT: float = 5.0


# =============================================================================
# PROFILE SENTINELS
# =============================================================================

# Profile names that mean "no profile managed by us"; "" is how Kubernetes
# reports an unconfined container.
UNCONFINED_PROFILES: FrozenSet[str] = frozenset({
    "unconfined",
    "docker-default",
    "",
})

# K8S_ENV values that identify a single-node development cluster, where
# securityfs is already mounted by the host.
LOCAL_K8S_ENVIRONMENTS: FrozenSet[str] = frozenset({
    "local",
    "microk8s",
    "minikube",
    "k3d",
    "kind",
})


__all__ = [
    'ENV_PREFIX',
    'Paths',
    'Commands',
    'Timeouts',
    'UNCONFINED_PROFILES',
    'LOCAL_K8S_ENVIRONMENTS',
    'parse_bool',
]
