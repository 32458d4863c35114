"""
Enforcement Module - AppArmor Profile Lifecycle

Turns container group security rules into AppArmor profiles and keeps the
kernel policy set in step with the containers that use them.

Components:
- AppArmorEnforcer: refcounted register/unregister, policy updates, teardown
- compile_profile: rules -> profile text inside the managed template
- OwnershipGuard: refuses to touch profiles this daemon did not create
- ProfileRegistry: in-memory refcounts with per-name locking
- AppArmorParserLoader: apparmor_parser -r -W / -R
"""

from .types import (
    TargetKind,
    RuleAction,
    SecurityRule,
    ContainerGroup,
    CompiledProfile,
)

from .errors import (
    EnforcerError,
    OwnershipConflictError,
    ProfileCompileError,
    LoaderError,
    ProfileIOError,
    UnknownProfileError,
    InvalidProfileNameError,
    EnforcerInitError,
)

from .profile_template import (
    ProfileTemplate,
    DEFAULT_TEMPLATE,
    OWNERSHIP_MARKER,
    OWNERSHIP_TAG,
)

from .profile_compiler import (
    compile_profile,
    build_profile,
    render_rule,
    sort_rules,
)

from .ownership import OwnershipGuard
from .registry import ProfileRegistry
from .loader import ProfileLoader, AppArmorParserLoader

from .apparmor_enforcer import (
    AppArmorEnforcer,
    initialize,
)

__all__ = [
    'TargetKind',
    'RuleAction',
    'SecurityRule',
    'ContainerGroup',
    'CompiledProfile',
    'EnforcerError',
    'OwnershipConflictError',
    'ProfileCompileError',
    'LoaderError',
    'ProfileIOError',
    'UnknownProfileError',
    'InvalidProfileNameError',
    'EnforcerInitError',
    'ProfileTemplate',
    'DEFAULT_TEMPLATE',
    'OWNERSHIP_MARKER',
    'OWNERSHIP_TAG',
    'compile_profile',
    'build_profile',
    'render_rule',
    'sort_rules',
    'OwnershipGuard',
    'ProfileRegistry',
    'ProfileLoader',
    'AppArmorParserLoader',
    'AppArmorEnforcer',
    'initialize',
]
