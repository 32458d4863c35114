"""
Policy Loader - Declarative container group policies from YAML.

Reads one container group per document so a group's AppArmor profiles can
be compiled and applied without a cluster control plane (node provisioning,
testing, armorctl).

Document format:
    namespace: default
    group: web
    containers:
      nginx: web-profile        # container -> AppArmor profile
      sidecar: unconfined
    rules:
      - kind: file
        pattern: /etc/shadow
        permissions: [read, write]
        action: block
        scope: [nginx]          # omitted or "all" = every container
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from armor.enforcement.types import ContainerGroup, SecurityRule

logger = logging.getLogger(__name__)


class PolicyFileError(Exception):
    """Raised when a policy document cannot be read or is malformed"""
    pass


def _parse_containers(data: Any) -> Dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PolicyFileError("'containers' must map container names to profiles")

    containers: Dict[str, str] = {}
    for name, profile in data.items():
        # A missing profile means the container runs unconfined
        containers[str(name)] = "" if profile is None else str(profile)
    return containers


def _parse_rules(data: Any) -> List[SecurityRule]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise PolicyFileError("'rules' must be a list")

    rules = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise PolicyFileError(f"rule #{index} must be a mapping")
        try:
            rules.append(SecurityRule.from_dict(entry))
        except (TypeError, ValueError) as e:
            raise PolicyFileError(f"rule #{index}: {e}") from e
    return rules


def container_group_from_dict(data: Dict[str, Any]) -> ContainerGroup:
    """
    Build a ContainerGroup from a parsed policy document.

    Raises:
        PolicyFileError: a required key is missing or a rule is invalid
    """
    if not isinstance(data, dict):
        raise PolicyFileError("policy document must be a mapping")

    for key in ('namespace', 'group'):
        if not data.get(key):
            raise PolicyFileError(f"policy document has no '{key}'")

    containers = _parse_containers(data.get('containers'))
    for container in containers:
        if not container:
            raise PolicyFileError("container names must not be empty")

    rules = _parse_rules(data.get('rules'))
    for index, rule in enumerate(rules):
        unknown = [c for c in rule.scope or () if c not in containers]
        if unknown:
            raise PolicyFileError(
                f"rule #{index}: scope names unknown container {unknown[0]!r}"
            )

    return ContainerGroup(
        namespace_name=str(data['namespace']),
        container_group_name=str(data['group']),
        containers=list(containers),
        apparmor_profiles=containers,
        security_policies=rules,
    )


def load_container_group(path: Union[str, Path]) -> ContainerGroup:
    """Load a container group policy document from a YAML file."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PolicyFileError(f"Failed to read policy {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PolicyFileError(f"Failed to parse policy {path}: {e}") from e

    try:
        group = container_group_from_dict(data)
    except PolicyFileError as e:
        raise PolicyFileError(f"{path}: {e}") from e

    logger.info(
        f"Loaded policy for {group.identity} from {path} "
        f"({len(group.security_policies)} rules)"
    )
    return group


__all__ = ['PolicyFileError', 'container_group_from_dict', 'load_container_group']
