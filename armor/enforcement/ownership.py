"""
Ownership guard for profiles in the AppArmor profile directory.

A profile is ours iff the file exists and carries the ownership tag. Files
without it were written by an operator or another tool and must never be
overwritten, reloaded or removed by the enforcer.
"""

from pathlib import Path
from typing import Union

from .errors import OwnershipConflictError, ProfileIOError
from .profile_template import OWNERSHIP_TAG


class OwnershipGuard:
    """Answers "may we touch this profile file?"."""

    def __init__(self, profile_dir: Union[str, Path], tag: str = OWNERSHIP_TAG):
        self.profile_dir = Path(profile_dir)
        self.tag = tag

    def path_for(self, profile_name: str) -> Path:
        """Canonical on-disk location of a profile."""
        return self.profile_dir / profile_name

    def _stat(self, path: Path, test: str) -> bool:
        try:
            return getattr(path, test)()
        except OSError as e:
            raise ProfileIOError(f"Unable to inspect {path} ({e})") from e

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            raise ProfileIOError(f"Unable to read {path} ({e})") from e

    def is_owned(self, path: Union[str, Path]) -> bool:
        """True only when the file exists and bears the ownership tag."""
        path = Path(path)
        if not self._stat(path, 'is_file'):
            return False
        return self.tag in self._read(path)

    def assert_ownable(self, path: Union[str, Path]) -> bool:
        """True when the file is absent or ours, False for foreign profiles."""
        path = Path(path)
        if not self._stat(path, 'exists'):
            return True
        return self.is_owned(path)

    def check(self, profile_name: str) -> bool:
        """
        Verify we may write or remove a profile.

        Returns:
            True if the profile file already exists (and is ours),
            False if it does not exist yet.

        Raises:
            OwnershipConflictError: the file exists and is not ours
            ProfileIOError: the file cannot be inspected or read
        """
        path = self.path_for(profile_name)
        if not self._stat(path, 'exists'):
            return False
        if not self.is_owned(path):
            raise OwnershipConflictError(profile_name)
        return True


__all__ = ['OwnershipGuard']
