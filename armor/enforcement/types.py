"""
Policy input types consumed by the AppArmor enforcer.

SecurityRule and ContainerGroup are owned by the policy distribution layer;
the enforcer only reads them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from armor.constants import UNCONFINED_PROFILES


class TargetKind(Enum):
    """What a security rule restricts."""
    PROCESS = "process"
    FILE = "file"
    NETWORK = "network"
    CAPABILITY = "capability"


class RuleAction(Enum):
    """How a matching access is treated."""
    ALLOW = "allow"
    AUDIT = "audit"
    BLOCK = "block"


# Accepted spellings in policy documents
_ACTION_ALIASES = {
    'allow': RuleAction.ALLOW,
    'audit': RuleAction.AUDIT,
    'block': RuleAction.BLOCK,
    'deny': RuleAction.BLOCK,
}


@dataclass(frozen=True)
class SecurityRule:
    """One resolved security rule."""
    kind: TargetKind
    pattern: str
    permissions: FrozenSet[str] = frozenset()
    action: RuleAction = RuleAction.BLOCK
    # None means every container of the group
    scope: Optional[Tuple[str, ...]] = None

    def applies_to(self, containers: Iterable[str]) -> bool:
        """Check whether the rule covers any of the given containers."""
        if not self.scope:
            return True
        return bool(set(self.scope) & set(containers))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SecurityRule':
        """Create from a policy document entry."""
        try:
            kind = TargetKind(str(data['kind']).lower())
        except KeyError:
            raise ValueError("rule has no 'kind'")
        except ValueError:
            raise ValueError(f"unknown rule kind {data.get('kind')!r}")

        pattern = data.get('pattern')
        if not isinstance(pattern, str) or not pattern:
            raise ValueError("rule has no 'pattern'")

        action_name = str(data.get('action', 'block')).lower()
        if action_name not in _ACTION_ALIASES:
            raise ValueError(f"unknown rule action {data.get('action')!r}")

        permissions = data.get('permissions') or []
        if isinstance(permissions, str):
            permissions = [permissions]

        scope = data.get('scope')
        if scope in (None, 'all', ['all']):
            scope = None
        elif isinstance(scope, str):
            scope = (scope,)
        else:
            scope = tuple(str(c) for c in scope)

        return cls(
            kind=kind,
            pattern=pattern,
            permissions=frozenset(str(p).lower() for p in permissions),
            action=_ACTION_ALIASES[action_name],
            scope=scope,
        )


@dataclass
class ContainerGroup:
    """A group of containers sharing one security policy set."""
    namespace_name: str
    container_group_name: str
    containers: List[str] = field(default_factory=list)
    # container name -> AppArmor profile name
    apparmor_profiles: Dict[str, str] = field(default_factory=dict)
    security_policies: List[SecurityRule] = field(default_factory=list)

    @property
    def identity(self) -> str:
        return f"{self.namespace_name}/{self.container_group_name}"

    def managed_profiles(self) -> List[str]:
        """Distinct profile names needing compilation, in first-seen order."""
        profiles: List[str] = []
        for container in self.containers:
            profile = self.apparmor_profiles.get(container, "")
            if profile in UNCONFINED_PROFILES:
                continue
            if profile not in profiles:
                profiles.append(profile)
        return profiles

    def containers_for_profile(self, profile_name: str) -> List[str]:
        return [
            c for c in self.containers
            if self.apparmor_profiles.get(c, "") == profile_name
        ]

    def rules_for_profile(self, profile_name: str) -> List[SecurityRule]:
        """Rules that apply to at least one container using the profile."""
        containers = self.containers_for_profile(profile_name)
        return [r for r in self.security_policies if r.applies_to(containers)]


@dataclass
class CompiledProfile:
    """Profile text produced for one name at one point in time."""
    name: str
    text: str
    rule_count: int


__all__ = [
    'TargetKind',
    'RuleAction',
    'SecurityRule',
    'ContainerGroup',
    'CompiledProfile',
]
