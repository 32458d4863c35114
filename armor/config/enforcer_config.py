"""
Enforcer Configuration

Settings for the AppArmor enforcer, read from a YAML file and/or the
environment. Environment variables win over the file.

Configuration Structure:
    enforcer:
      profile_dir: /etc/apparmor.d
      parser: apparmor_parser
      loader_timeout: 30
      k8s_local: false
      securityfs_path: /sys/kernel/security

Environment Variables:
    ARMOR_PROFILE_DIR      - profile directory
    ARMOR_PARSER           - apparmor_parser binary
    ARMOR_LOADER_TIMEOUT   - seconds before a parser run counts as failed
    ARMOR_K8S_LOCAL        - skip mounting securityfs (local dev cluster)
    K8S_ENV                - local/microk8s/minikube/k3d/kind imply ARMOR_K8S_LOCAL

Usage:
    from armor.config import load_config

    config = load_config("/etc/armor-daemon/config.yaml")
"""

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from armor.constants import (
    LOCAL_K8S_ENVIRONMENTS,
    Commands,
    Paths,
    Timeouts,
    _env_override,
    parse_bool,
)

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid"""
    pass


@dataclass
class EnforcerConfig:
    """Runtime settings of the AppArmor enforcer."""
    profile_dir: str = Paths.APPARMOR_PROFILE_DIR
    parser_path: str = Commands.APPARMOR_PARSER
    loader_timeout: float = Timeouts.LOADER_DEFAULT
    k8s_local: bool = False
    securityfs_path: str = Paths.SECURITYFS_MOUNT
    mount_timeout: float = Timeouts.MOUNT

    def validate(self) -> None:
        """Raise ConfigError when a value is unusable."""
        if not self.profile_dir:
            raise ConfigError("profile_dir must not be empty")
        if not self.parser_path:
            raise ConfigError("parser must not be empty")
        if not Timeouts.LOADER_MIN <= self.loader_timeout <= Timeouts.LOADER_MAX:
            raise ConfigError(
                f"loader_timeout must be between {Timeouts.LOADER_MIN} "
                f"and {Timeouts.LOADER_MAX} seconds"
            )
        if self.mount_timeout <= 0:
            raise ConfigError("mount_timeout must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnforcerConfig':
        """Create from the 'enforcer' mapping of a config file."""
        defaults = cls()
        try:
            config = cls(
                profile_dir=str(data.get('profile_dir', defaults.profile_dir)),
                parser_path=str(data.get('parser', defaults.parser_path)),
                loader_timeout=float(data.get('loader_timeout', defaults.loader_timeout)),
                k8s_local=_as_bool(data.get('k8s_local', defaults.k8s_local)),
                securityfs_path=str(data.get('securityfs_path', defaults.securityfs_path)),
                mount_timeout=float(data.get('mount_timeout', defaults.mount_timeout)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid enforcer configuration: {e}") from e
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'EnforcerConfig':
        """Load from a YAML file; a missing 'enforcer' key means defaults."""
        path = Path(path)
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping")

        section = data.get('enforcer', {}) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"'enforcer' in {path} must be a mapping")

        config = cls.from_dict(section)
        logger.info(f"Loaded enforcer configuration from {path}")
        return config

    def apply_environment(self) -> 'EnforcerConfig':
        """Overlay ARMOR_* environment variables onto this config."""
        self.profile_dir = _env_override('PROFILE_DIR', self.profile_dir)
        self.parser_path = _env_override('PARSER', self.parser_path)
        self.loader_timeout = _env_override(
            'LOADER_TIMEOUT',
            self.loader_timeout,
            converter=float,
            min_value=Timeouts.LOADER_MIN,
            max_value=Timeouts.LOADER_MAX,
        )
        self.k8s_local = _env_override('K8S_LOCAL', self.k8s_local, converter=parse_bool)
        if os.environ.get('K8S_ENV', '').strip().lower() in LOCAL_K8S_ENVIRONMENTS:
            self.k8s_local = True
        return self

    @classmethod
    def from_environment(cls) -> 'EnforcerConfig':
        return cls().apply_environment()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return parse_bool(str(value))


def load_config(path: Optional[Union[str, Path]] = None) -> EnforcerConfig:
    """
    Load configuration from an optional YAML file, then the environment.

    Raises:
        ConfigError: the file cannot be read or holds invalid values
    """
    if path is not None:
        config = EnforcerConfig.from_yaml(path)
    else:
        config = EnforcerConfig()
    config.apply_environment()
    config.validate()
    return config


__all__ = ['EnforcerConfig', 'ConfigError', 'load_config']
