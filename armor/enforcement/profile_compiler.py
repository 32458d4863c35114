"""
AppArmor Profile Compiler

Turns a set of SecurityRule values into AppArmor profile text inside the
managed profile template.

Features:
- One rendering function per target kind (process, file, network, capability)
- Block rules become explicit deny rules, audit rules get the audit qualifier
- Deterministic rule ordering: identical rule sets compile to identical bytes
- Patterns that could escape AppArmor quoting are rejected, never written

Usage:
    from armor.enforcement.profile_compiler import compile_profile

    count, text, ok = compile_profile("web-profile", rules)
    if not ok:
        logger.error(text)  # diagnostic, not profile text
"""

import re
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from .errors import ProfileCompileError
from .profile_template import DEFAULT_TEMPLATE, ProfileTemplate
from .types import CompiledProfile, RuleAction, SecurityRule, TargetKind


# Longest single path component Linux accepts (NAME_MAX)
PROFILE_NAME_MAX = 255
PROFILE_NAME_RE = re.compile(r'[A-Za-z0-9][A-Za-z0-9._-]{0,%d}' % (PROFILE_NAME_MAX - 1))

# Ordering used for deterministic output
KIND_ORDER = {kind: index for index, kind in enumerate(TargetKind)}
ACTION_ORDER = {action: index for index, action in enumerate(RuleAction)}

# Canonical order of AppArmor file permission letters
FILE_PERMISSIONS: Dict[str, str] = {
    'read': 'r',
    'r': 'r',
    'write': 'w',
    'w': 'w',
    'append': 'a',
    'a': 'a',
    'mmap': 'm',
    'm': 'm',
    'execute': 'x',
    'exec': 'x',
    'x': 'x',
    'link': 'l',
    'l': 'l',
    'lock': 'k',
    'k': 'k',
}
FILE_PERMISSION_ORDER = "rwamxlk"

NETWORK_DOMAINS = frozenset({
    'inet', 'inet6', 'unix', 'netlink', 'packet', 'bluetooth', 'ax25', 'x25',
})
NETWORK_TYPES = frozenset({
    'stream', 'dgram', 'seqpacket', 'raw', 'rdm', 'packet',
    'tcp', 'udp', 'icmp', 'icmpv6',
})

CAPABILITIES = frozenset({
    'chown', 'dac_override', 'dac_read_search', 'fowner', 'fsetid', 'kill',
    'setgid', 'setuid', 'setpcap', 'linux_immutable', 'net_bind_service',
    'net_broadcast', 'net_admin', 'net_raw', 'ipc_lock', 'ipc_owner',
    'sys_module', 'sys_rawio', 'sys_chroot', 'sys_ptrace', 'sys_pacct',
    'sys_admin', 'sys_boot', 'sys_nice', 'sys_resource', 'sys_time',
    'sys_tty_config', 'mknod', 'lease', 'audit_write', 'audit_control',
    'setfcap', 'mac_override', 'mac_admin', 'syslog', 'wake_alarm',
    'block_suspend', 'audit_read', 'perfmon', 'bpf', 'checkpoint_restore',
})

# Characters that force a path into double quotes
_QUOTE_TRIGGERS = frozenset(' #,')


# =============================================================================
# PATTERN HELPERS
# =============================================================================

def _check_safe(pattern: str) -> None:
    """Reject patterns that could break out of an AppArmor rule."""
    if not pattern:
        raise ProfileCompileError("empty pattern")
    for ch in pattern:
        if ch == '"':
            raise ProfileCompileError("pattern contains a double quote")
        if ord(ch) < 32 or ord(ch) == 127:
            raise ProfileCompileError(
                f"pattern contains control character {ch!r}"
            )
    if pattern.endswith('\\'):
        raise ProfileCompileError("pattern ends with a backslash")


def quote_path(pattern: str) -> str:
    """Render a path pattern, quoting it when AppArmor requires it."""
    _check_safe(pattern)
    if not (pattern.startswith('/') or pattern.startswith('@{')):
        raise ProfileCompileError(
            "path pattern must be absolute or start with an AppArmor variable"
        )
    if any(ch in _QUOTE_TRIGGERS for ch in pattern):
        return f'"{pattern}"'
    return pattern


def _qualifier(action: RuleAction) -> str:
    if action == RuleAction.BLOCK:
        return "deny "
    if action == RuleAction.AUDIT:
        return "audit "
    return ""


def _file_permission_string(permissions: Iterable[str], action: RuleAction) -> str:
    letters = set()
    for perm in permissions:
        letter = FILE_PERMISSIONS.get(perm)
        if letter is None:
            raise ProfileCompileError(f"unknown file permission {perm!r}")
        letters.add(letter)

    if not letters:
        letters.add('r')

    # apparmor_parser rejects w and a together; w implies a
    if 'w' in letters:
        letters.discard('a')

    perms = ""
    for letter in FILE_PERMISSION_ORDER:
        if letter not in letters:
            continue
        # deny rules take a bare x, grants need an execute mode
        if letter == 'x' and action != RuleAction.BLOCK:
            perms += "ix"
        else:
            perms += letter
    return perms


# =============================================================================
# PER-KIND RENDERERS
# =============================================================================

def render_file_rule(rule: SecurityRule) -> str:
    path = quote_path(rule.pattern)
    perms = _file_permission_string(rule.permissions, rule.action)
    return f"{_qualifier(rule.action)}{path} {perms},"


def render_process_rule(rule: SecurityRule) -> str:
    path = quote_path(rule.pattern)
    permissions = set(rule.permissions)
    unknown = permissions - {'execute', 'exec', 'x', 'read', 'r'}
    if unknown:
        raise ProfileCompileError(
            f"unknown process permission {sorted(unknown)[0]!r}"
        )
    perms = _file_permission_string(
        {'x'} | ({'r'} if permissions & {'read', 'r'} else set()),
        rule.action,
    )
    return f"{_qualifier(rule.action)}{path} {perms},"


def render_network_rule(rule: SecurityRule) -> str:
    _check_safe(rule.pattern)
    tokens = rule.pattern.lower().split()

    if tokens in (['*'], ['all']):
        return f"{_qualifier(rule.action)}network,"

    if len(tokens) == 1:
        if tokens[0] not in NETWORK_DOMAINS and tokens[0] not in NETWORK_TYPES:
            raise ProfileCompileError(f"unknown network family or protocol {tokens[0]!r}")
    elif len(tokens) == 2:
        if tokens[0] not in NETWORK_DOMAINS:
            raise ProfileCompileError(f"unknown network family {tokens[0]!r}")
        if tokens[1] not in NETWORK_TYPES:
            raise ProfileCompileError(f"unknown network type or protocol {tokens[1]!r}")
    else:
        raise ProfileCompileError("network pattern must be '<family> [<type>]'")

    return f"{_qualifier(rule.action)}network {' '.join(tokens)},"


def render_capability_rule(rule: SecurityRule) -> str:
    _check_safe(rule.pattern)
    name = rule.pattern.strip().lower()
    if name.startswith('cap_'):
        name = name[4:]
    if name not in CAPABILITIES:
        raise ProfileCompileError(f"unknown capability {rule.pattern!r}")
    return f"{_qualifier(rule.action)}capability {name},"


RENDERERS: Dict[TargetKind, Callable[[SecurityRule], str]] = {
    TargetKind.PROCESS: render_process_rule,
    TargetKind.FILE: render_file_rule,
    TargetKind.NETWORK: render_network_rule,
    TargetKind.CAPABILITY: render_capability_rule,
}


def render_rule(rule: SecurityRule) -> str:
    """Render a single rule to one AppArmor rule line (without indent)."""
    return RENDERERS[rule.kind](rule)


def sort_rules(rules: Iterable[SecurityRule]) -> List[SecurityRule]:
    """Deterministic order: target kind, pattern, action, permissions."""
    return sorted(
        rules,
        key=lambda r: (
            KIND_ORDER[r.kind],
            r.pattern,
            ACTION_ORDER[r.action],
            tuple(sorted(r.permissions)),
        ),
    )


# =============================================================================
# COMPILATION
# =============================================================================

def build_profile(
    profile_name: str,
    rules: Sequence[SecurityRule],
    template: ProfileTemplate = DEFAULT_TEMPLATE,
) -> CompiledProfile:
    """
    Compile rules into a full profile.

    Raises:
        ProfileCompileError: the name or a rule cannot be rendered safely
    """
    if not PROFILE_NAME_RE.fullmatch(profile_name or ""):
        raise ProfileCompileError(f"invalid AppArmor profile name {profile_name!r}")

    lines: List[str] = []
    seen = set()
    ordered = sort_rules(rules)

    for rule in ordered:
        try:
            line = render_rule(rule)
        except ProfileCompileError as e:
            raise ProfileCompileError(
                f"Failed to compile {rule.action.value} {rule.kind.value} rule "
                f"{rule.pattern!r} for {profile_name}: {e}"
            ) from e
        if line not in seen:
            seen.add(line)
            lines.append(line)

    return CompiledProfile(
        name=profile_name,
        text=template.render(profile_name, lines),
        rule_count=len(ordered),
    )


def compile_profile(
    profile_name: str,
    rules: Sequence[SecurityRule],
    template: ProfileTemplate = DEFAULT_TEMPLATE,
) -> Tuple[int, str, bool]:
    """
    Compile rules into profile text.

    Returns:
        (rule_count, profile_text, True) on success, or
        (0, diagnostic, False) when a rule cannot be rendered
    """
    try:
        compiled = build_profile(profile_name, rules, template)
    except ProfileCompileError as e:
        return 0, str(e), False
    return compiled.rule_count, compiled.text, True


__all__ = [
    'compile_profile',
    'build_profile',
    'render_rule',
    'sort_rules',
    'quote_path',
    'RENDERERS',
    'CAPABILITIES',
]
