"""
AppArmor Enforcer

Manages the lifecycle of AppArmor profiles shared by containers on a node:
creates them from the managed template, recompiles them when a container
group's policy changes, and detaches them when the last container using a
profile goes away.

Features:
- Refcounted registration: one profile can back many containers
- Ownership guard: profiles without our marker are never touched
- Write-validate-commit updates through apparmor_parser
- Startup sweep removing owned profiles left behind by a previous run
- Teardown detaching every tracked profile on shutdown

Usage:
    from armor.enforcement import initialize

    enforcer = initialize()                       # sweep + mount securityfs
    enforcer.register_profile("web-profile")      # per container start
    enforcer.update_security_policies(group)      # on policy change
    enforcer.unregister_profile("web-profile")    # per container stop
    enforcer.destroy()                            # on shutdown
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from armor.config import ConfigError, EnforcerConfig, load_config
from armor.logging_config import LogLevel, get_logger
from armor.utils.commands import mount_securityfs
from armor.utils.error_handling import ErrorCategory, get_error_aggregator, handle_error

from .errors import (
    EnforcerError,
    EnforcerInitError,
    InvalidProfileNameError,
    LoaderError,
    OwnershipConflictError,
    ProfileCompileError,
    ProfileIOError,
    UnknownProfileError,
)
from .loader import AppArmorParserLoader, ProfileLoader
from .ownership import OwnershipGuard
from .profile_compiler import PROFILE_NAME_RE, compile_profile
from .profile_template import DEFAULT_TEMPLATE, ProfileTemplate
from .registry import ProfileRegistry
from .types import ContainerGroup, SecurityRule

logger = get_logger(__name__)


class AppArmorEnforcer:
    """
    Lifecycle manager for AppArmor profiles.

    Every public operation returns (ok, message) and never raises; failures
    are logged and recorded through handle_error().
    """

    def __init__(
        self,
        config: Optional[EnforcerConfig] = None,
        loader: Optional[ProfileLoader] = None,
        registry: Optional[ProfileRegistry] = None,
        template: ProfileTemplate = DEFAULT_TEMPLATE,
    ):
        self.config = config or EnforcerConfig()
        self.loader = loader or AppArmorParserLoader(
            self.config.parser_path,
            self.config.loader_timeout,
        )
        self.registry = registry or ProfileRegistry()
        self.template = template
        self.profile_dir = Path(self.config.profile_dir)
        self.guard = OwnershipGuard(self.profile_dir)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _fail(self, error: EnforcerError, operation: str, profile_name: str) -> Tuple[bool, str]:
        log_level = LogLevel.SECURITY.value if isinstance(error, OwnershipConflictError) else None
        handle_error(
            error,
            f"{operation} AppArmor profile",
            category=error.category,
            additional_context={'profile': profile_name},
            log_level=log_level,
        )
        return False, f"Unable to {operation} an AppArmor profile ({error})"

    def _check_name(self, profile_name: str) -> None:
        if not PROFILE_NAME_RE.fullmatch(profile_name or ""):
            raise InvalidProfileNameError(profile_name)

    def _write_profile(self, path: Path, content: str) -> None:
        """Write and fsync profile text at its canonical path."""
        try:
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise ProfileIOError(f"Failed to write {path} ({e})") from e

    def _remove_profile_file(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ProfileIOError(f"Failed to remove {path} ({e})") from e

    def _load(self, profile_name: str, path: Path) -> str:
        ok, output = self.loader.load(path)
        if not ok:
            raise LoaderError(f"{profile_name}, {output.strip()}", output)
        return output

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register_profile(self, profile_name: str) -> Tuple[bool, str]:
        """
        Add one consumer of a profile, creating and loading it if needed.

        An absent profile is materialized from the template (no policy rules
        yet) and loaded. An existing owned profile is reloaded as is. A
        foreign profile is refused.
        """
        try:
            self._check_name(profile_name)
        except EnforcerError as e:
            return self._fail(e, "register", profile_name)

        with self.registry.name_lock(profile_name):
            try:
                path = self.guard.path_for(profile_name)
                created = not self.guard.check(profile_name)
                if created:
                    self._write_profile(path, self.template.baseline(profile_name))

                try:
                    self._load(profile_name, path)
                except LoaderError:
                    if created:
                        try:
                            self._remove_profile_file(path)
                        except ProfileIOError as cleanup_error:
                            logger.warning(str(cleanup_error))
                    raise
            except EnforcerError as e:
                return self._fail(e, "register", profile_name)

            old, new = self.registry.increment(profile_name)

        if old == 0:
            message = f"Registered an AppArmor profile ({profile_name})"
        else:
            message = (
                f"Increased the refCount ({old} -> {new}) of an AppArmor "
                f"profile ({profile_name})"
            )
        logger.info(message)
        return True, message

    def unregister_profile(self, profile_name: str, force: bool = False) -> Tuple[bool, str]:
        """
        Drop one consumer of a profile; detach it when it was the last one.

        Args:
            profile_name: Profile to release
            force: Detach regardless of the refcount (used by destroy())
        """
        try:
            self._check_name(profile_name)
        except EnforcerError as e:
            return self._fail(e, "unregister", profile_name)

        with self.registry.name_lock(profile_name):
            try:
                exists = self.guard.check(profile_name)

                count = self.registry.count(profile_name)
                if count == 0:
                    raise UnknownProfileError(profile_name)

                if count > 1 and not force:
                    old, new = self.registry.decrement(profile_name)
                    message = (
                        f"Decreased the refCount ({old} -> {new}) of an AppArmor "
                        f"profile ({profile_name})"
                    )
                    logger.info(message)
                    return True, message

                if exists:
                    path = self.guard.path_for(profile_name)
                    ok, output = self.loader.unload(path)
                    if not ok:
                        raise LoaderError(f"{profile_name}, {output.strip()}", output)
                    self._remove_profile_file(path)
                else:
                    logger.warning(
                        f"AppArmor profile file for {profile_name} is already gone, "
                        f"dropping its registry entry"
                    )
            except EnforcerError as e:
                return self._fail(e, "unregister", profile_name)

            self.registry.discard(profile_name)

        message = f"Unregistered an AppArmor profile ({profile_name})"
        logger.info(message)
        return True, message

    # =========================================================================
    # POLICY UPDATES
    # =========================================================================

    def update_profile(
        self,
        group: Optional[ContainerGroup],
        profile_name: str,
        rules: Sequence[SecurityRule],
    ) -> Tuple[bool, str]:
        """
        Recompile a profile from rules and commit it.

        The refcount is not consulted: a profile can be updated whether or
        not any container has registered it yet. When compilation fails the
        file on disk and the kernel state are left untouched. When the loader
        rejects the new text, the candidate stays on disk and the kernel keeps
        enforcing the previously loaded version.
        """
        target = f"{group.identity}/{profile_name}" if group else profile_name

        policy_count, new_profile, ok = compile_profile(profile_name, rules, self.template)
        if not ok:
            # new_profile holds the diagnostic here
            return self._fail(ProfileCompileError(new_profile), "update", profile_name)

        with self.registry.name_lock(profile_name):
            try:
                self.guard.check(profile_name)
                path = self.guard.path_for(profile_name)
                self._write_profile(path, new_profile)

                ok, output = self.loader.load(path)
                if not ok:
                    raise LoaderError(
                        f"Failed to update {policy_count} security rules to "
                        f"{target} ({output.strip()})",
                        output,
                    )
            except EnforcerError as e:
                return self._fail(e, "update", profile_name)

        message = f"Updated {policy_count} security rules to {target}"
        logger.info(message)
        return True, message

    def update_security_policies(self, group: ContainerGroup) -> Dict[str, Tuple[bool, str]]:
        """Apply a container group's policy to every profile it uses."""
        results: Dict[str, Tuple[bool, str]] = {}
        for profile_name in group.managed_profiles():
            results[profile_name] = self.update_profile(
                group,
                profile_name,
                group.rules_for_profile(profile_name),
            )
        return results

    # =========================================================================
    # STARTUP / SHUTDOWN
    # =========================================================================

    def owned_profiles(self) -> List[Path]:
        """
        Profile files in the profile directory that carry our marker.

        Raises:
            ProfileIOError: the directory or a profile file cannot be read
        """
        try:
            entries = sorted(self.profile_dir.iterdir())
        except OSError as e:
            raise ProfileIOError(f"Failed to read {self.profile_dir} ({e})") from e

        return [path for path in entries if self.guard.is_owned(path)]

    def sweep_profiles(self) -> List[str]:
        """
        Detach and delete every owned profile in the profile directory.

        The registry is emptied once every owned profile is gone.

        Returns:
            Names of the removed profiles

        Raises:
            EnforcerInitError: the directory cannot be read or an owned
                profile cannot be detached or deleted
        """
        try:
            owned = self.owned_profiles()
        except ProfileIOError as e:
            raise EnforcerInitError(str(e)) from e

        removed: List[str] = []
        for path in owned:
            ok, output = self.loader.unload(path)
            if not ok:
                raise EnforcerInitError(f"Failed to detach {path} ({output.strip()})")

            try:
                path.unlink()
            except OSError as e:
                raise EnforcerInitError(f"Failed to remove {path} ({e})") from e

            removed.append(path.name)
            logger.notice(f"Removed a stale AppArmor profile ({path.name})")

        self.registry.clear()
        return removed

    def destroy(self) -> Tuple[bool, str]:
        """Detach every profile the registry tracks, whatever its refcount."""
        names = self.registry.names()
        failed = [
            name for name in names
            if not self.unregister_profile(name, force=True)[0]
        ]

        if failed:
            return False, f"Failed to detach AppArmor profiles ({', '.join(failed)})"
        return True, f"Detached {len(names)} AppArmor profiles"

    def get_status(self, recent_errors: int = 5) -> Dict[str, Any]:
        """Tracked refcounts plus the failures reported through handle_error()."""
        aggregator = get_error_aggregator()
        return {
            'profile_dir': str(self.profile_dir),
            'loader': self.loader.name,
            'profiles': self.registry.snapshot(),
            'errors': aggregator.get_error_summary(),
            'recent_errors': aggregator.get_recent_errors(recent_errors),
        }

    def __enter__(self) -> 'AppArmorEnforcer':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()
        return False


def initialize(
    config: Optional[EnforcerConfig] = None,
    loader: Optional[ProfileLoader] = None,
    registry: Optional[ProfileRegistry] = None,
) -> AppArmorEnforcer:
    """
    Build a ready enforcer: mount securityfs, then clear stale profiles.

    Raises:
        EnforcerInitError: configuration is invalid or the sweep failed
    """
    try:
        if config is None:
            config = load_config()
        config.validate()

        if not config.k8s_local:
            mount_securityfs(config.securityfs_path, config.mount_timeout)

        enforcer = AppArmorEnforcer(config, loader, registry)
        removed = enforcer.sweep_profiles()
    except ConfigError as e:
        handle_error(e, "initialize AppArmor enforcer", category=ErrorCategory.CONFIG)
        raise EnforcerInitError(str(e)) from e
    except EnforcerInitError as e:
        handle_error(e, "initialize AppArmor enforcer", category=e.category)
        raise

    logger.info(
        f"Initialized AppArmor enforcer on {config.profile_dir} "
        f"({len(removed)} stale profiles removed)"
    )
    return enforcer


__all__ = ['AppArmorEnforcer', 'initialize']
