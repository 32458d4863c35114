"""
Baseline AppArmor profile template.

Every managed profile is three ordered blocks: the pre section (ownership
marker, profile header and PRE baseline), the policy rules between the
POLICY START/END markers, and the post section (POST baseline and closing
brace). The pre and post sections are emitted verbatim apart from the
profile name.
"""

from dataclasses import dataclass
from typing import Iterable

# First line of every profile this daemon writes
OWNERSHIP_MARKER = "## == Managed by Armor Daemon == ##"

# Substring checked when deciding whether a profile is ours
OWNERSHIP_TAG = "Managed by Armor Daemon"

PROFILE_NAME_PLACEHOLDER = "apparmor-default"

RULE_INDENT = "  "

_PRE_SECTION = (
    OWNERSHIP_MARKER + "\n"
    "\n"
    "#include <tunables/global>\n"
    "\n"
    "profile " + PROFILE_NAME_PLACEHOLDER + " flags=(attach_disconnected,mediate_deleted) {\n"
    "  ## == PRE START == ##\n"
    "  #include <abstractions/base>\n"
    "  umount,\n"
    "  file,\n"
    "  network,\n"
    "  capability,\n"
    "  ## == PRE END == ##\n"
    "\n"
)

_POST_SECTION = (
    "\n"
    "  ## == POST START == ##\n"
    "  deny @{PROC}/{*,**^[0-9*],sys/kernel/shm*} wkx,\n"
    "  deny @{PROC}/sysrq-trigger rwklx,\n"
    "  deny @{PROC}/mem rwklx,\n"
    "  deny @{PROC}/kmem rwklx,\n"
    "  deny @{PROC}/kcore rwklx,\n"
    "\n"
    "  deny mount,\n"
    "\n"
    "  deny /sys/[^f]*/** wklx,\n"
    "  deny /sys/f[^s]*/** wklx,\n"
    "  deny /sys/fs/[^c]*/** wklx,\n"
    "  deny /sys/fs/c[^g]*/** wklx,\n"
    "  deny /sys/fs/cg[^r]*/** wklx,\n"
    "  deny /sys/firmware/efi/efivars/** rwklx,\n"
    "  deny /sys/kernel/security/** rwklx,\n"
    "  ## == POST END == ##\n"
    "}\n"
)


@dataclass(frozen=True)
class ProfileTemplate:
    """Immutable pre/post text bracketing the policy section."""
    pre_section: str = _PRE_SECTION
    post_section: str = _POST_SECTION
    policy_start: str = "## == POLICY START == ##"
    policy_end: str = "## == POLICY END == ##"
    placeholder: str = PROFILE_NAME_PLACEHOLDER

    def pre_for(self, profile_name: str) -> str:
        """Pre section with the profile name filled in."""
        return self.pre_section.replace(self.placeholder, profile_name)

    def render(self, profile_name: str, rule_lines: Iterable[str]) -> str:
        """Assemble a full profile from already-rendered rule lines."""
        policy = [RULE_INDENT + self.policy_start + "\n"]
        policy.extend(RULE_INDENT + line + "\n" for line in rule_lines)
        policy.append(RULE_INDENT + self.policy_end + "\n")
        return self.pre_for(profile_name) + "".join(policy) + self.post_section

    def baseline(self, profile_name: str) -> str:
        """Profile with an empty policy section, used on first registration."""
        return self.render(profile_name, [])


DEFAULT_TEMPLATE = ProfileTemplate()


__all__ = [
    'OWNERSHIP_MARKER',
    'OWNERSHIP_TAG',
    'PROFILE_NAME_PLACEHOLDER',
    'ProfileTemplate',
    'DEFAULT_TEMPLATE',
]
