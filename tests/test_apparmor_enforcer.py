"""
Tests for armor/enforcement/apparmor_enforcer.py - Profile Lifecycle

Tests cover:
- Refcounted register/unregister
- Ownership protection of foreign profiles
- Policy updates (write, validate, commit)
- Startup sweep and teardown
- Concurrent access to one profile
"""

import logging
import threading
from unittest.mock import patch

import pytest

from armor.config import ConfigError, EnforcerConfig
from armor.enforcement import (
    DEFAULT_TEMPLATE,
    AppArmorEnforcer,
    EnforcerInitError,
    RuleAction,
    SecurityRule,
    TargetKind,
    initialize,
)
from armor.logging_config import LogLevel
from armor.utils.error_handling import ErrorCategory, get_error_aggregator


# ===========================================================================
# Registration
# ===========================================================================

class TestRegister:
    """Tests for register_profile()."""

    def test_first_registration_creates_baseline(self, enforcer, loader, profile_dir):
        ok, message = enforcer.register_profile("p1")

        assert ok
        assert message == "Registered an AppArmor profile (p1)"
        assert (profile_dir / "p1").read_text() == DEFAULT_TEMPLATE.baseline("p1")
        assert loader.loaded["p1"] == DEFAULT_TEMPLATE.baseline("p1")
        assert enforcer.registry.count("p1") == 1

    def test_second_registration_increments(self, enforcer, loader):
        enforcer.register_profile("p1")
        ok, message = enforcer.register_profile("p1")

        assert ok
        assert message == "Increased the refCount (1 -> 2) of an AppArmor profile (p1)"
        assert enforcer.registry.count("p1") == 2
        # Every registration revalidates the profile with the parser
        assert loader.count('load', "p1") == 2

    def test_existing_owned_profile_is_reloaded_not_rewritten(self, enforcer, loader, stale_profile):
        content = stale_profile.read_text()

        ok, _ = enforcer.register_profile("stale")

        assert ok
        assert stale_profile.read_text() == content
        assert loader.count('load', "stale") == 1

    def test_foreign_profile_refused(self, enforcer, loader, foreign_profile):
        """A profile without our marker is never touched."""
        content = foreign_profile.read_text()

        ok, message = enforcer.register_profile("p2")

        assert not ok
        assert "out-of-control" in message
        assert foreign_profile.read_text() == content
        assert "p2" not in enforcer.registry
        assert loader.calls == []

    def test_foreign_profile_logged_at_security_level(self, enforcer, foreign_profile, caplog):
        with caplog.at_level(logging.DEBUG):
            enforcer.register_profile("p2")

        assert any(r.levelno == LogLevel.SECURITY.value for r in caplog.records)
        summary = get_error_aggregator().get_error_summary()
        assert summary['by_category'] == {ErrorCategory.OWNERSHIP.value: 1}

    def test_load_failure_removes_created_file(self, enforcer, loader, profile_dir):
        loader.fail_load.add("p1")

        ok, message = enforcer.register_profile("p1")

        assert not ok
        assert "syntax error" in message
        assert not (profile_dir / "p1").exists()
        assert "p1" not in enforcer.registry

    def test_load_failure_keeps_preexisting_file(self, enforcer, loader, stale_profile):
        loader.fail_load.add("stale")

        ok, _ = enforcer.register_profile("stale")

        assert not ok
        assert stale_profile.exists()
        assert "stale" not in enforcer.registry

    @pytest.mark.parametrize("name", ["", "../etc/passwd", "a/b", ".hidden"])
    def test_invalid_name_refused(self, enforcer, loader, profile_dir, name):
        ok, message = enforcer.register_profile(name)

        assert not ok
        assert "invalid AppArmor profile name" in message
        assert loader.calls == []
        assert list(profile_dir.iterdir()) == []

    def test_overlong_name_refused_by_every_operation(self, enforcer, loader, profile_dir, shadow_rule):
        """A name longer than one path component fails as a result, not as OSError."""
        name = "p" * 300

        results = [
            enforcer.register_profile(name),
            enforcer.update_profile(None, name, [shadow_rule]),
            enforcer.unregister_profile(name),
        ]

        for ok, message in results:
            assert not ok
            assert "invalid AppArmor profile name" in message
        assert loader.calls == []
        assert list(profile_dir.iterdir()) == []

    def test_write_failure_reported(self, enforcer, loader):
        with patch(
            "armor.enforcement.apparmor_enforcer.open",
            side_effect=PermissionError("read-only"),
            create=True,
        ):
            ok, message = enforcer.register_profile("p1")

        assert not ok
        assert "read-only" in message
        assert "p1" not in enforcer.registry
        assert loader.calls == []


# ===========================================================================
# Unregistration
# ===========================================================================

class TestUnregister:
    """Tests for unregister_profile()."""

    def test_register_twice_unregister_twice(self, enforcer, loader, profile_dir):
        """The profile outlives every consumer but the last."""
        enforcer.register_profile("p1")
        enforcer.register_profile("p1")

        ok, message = enforcer.unregister_profile("p1")
        assert ok
        assert message == "Decreased the refCount (2 -> 1) of an AppArmor profile (p1)"
        assert enforcer.registry.count("p1") == 1
        assert (profile_dir / "p1").exists()
        assert loader.count('unload', "p1") == 0

        ok, message = enforcer.unregister_profile("p1")
        assert ok
        assert message == "Unregistered an AppArmor profile (p1)"
        assert "p1" not in enforcer.registry
        assert not (profile_dir / "p1").exists()
        assert loader.count('unload', "p1") == 1
        assert "p1" not in loader.loaded

    def test_unknown_profile(self, enforcer, loader):
        ok, message = enforcer.unregister_profile("p1")

        assert not ok
        assert "unknown AppArmor profile (p1)" in message
        assert loader.calls == []

    def test_unknown_profile_with_owned_file_left_alone(self, enforcer, loader, stale_profile):
        """Only the sweep removes owned files nobody registered."""
        ok, _ = enforcer.unregister_profile("stale")

        assert not ok
        assert stale_profile.exists()
        assert loader.calls == []

    def test_foreign_profile_refused(self, enforcer, loader, foreign_profile):
        ok, message = enforcer.unregister_profile("p2")

        assert not ok
        assert "out-of-control" in message
        assert foreign_profile.exists()

    def test_vanished_file_drops_entry(self, enforcer, loader, profile_dir):
        enforcer.register_profile("p1")
        (profile_dir / "p1").unlink()

        ok, _ = enforcer.unregister_profile("p1")

        assert ok
        assert "p1" not in enforcer.registry
        assert loader.count('unload', "p1") == 0

    def test_unload_failure_keeps_state(self, enforcer, loader, profile_dir):
        enforcer.register_profile("p1")
        loader.fail_unload.add("p1")

        ok, message = enforcer.unregister_profile("p1")

        assert not ok
        assert "unable to remove p1" in message
        assert enforcer.registry.count("p1") == 1
        assert (profile_dir / "p1").exists()

    def test_force_ignores_refcount(self, enforcer, profile_dir):
        for _ in range(3):
            enforcer.register_profile("p1")

        ok, _ = enforcer.unregister_profile("p1", force=True)

        assert ok
        assert "p1" not in enforcer.registry
        assert not (profile_dir / "p1").exists()


# ===========================================================================
# Policy Updates
# ===========================================================================

class TestUpdateProfile:
    """Tests for update_profile() and update_security_policies()."""

    def test_shadow_block_applied(self, enforcer, loader, profile_dir, shadow_rule):
        enforcer.register_profile("p1")

        ok, message = enforcer.update_profile(None, "p1", [shadow_rule])

        text = (profile_dir / "p1").read_text()
        assert ok
        assert message == "Updated 1 security rules to p1"
        start = text.index("## == POLICY START == ##")
        end = text.index("## == POLICY END == ##")
        assert "deny /etc/shadow rw," in text[start:end]
        assert text.startswith(DEFAULT_TEMPLATE.pre_for("p1"))
        assert text.endswith(DEFAULT_TEMPLATE.post_section)
        assert loader.loaded["p1"] == text

    def test_update_without_registration(self, enforcer, loader, profile_dir, shadow_rule):
        """Updates do not consult the refcount."""
        ok, _ = enforcer.update_profile(None, "p1", [shadow_rule])

        assert ok
        assert (profile_dir / "p1").exists()
        assert "p1" not in enforcer.registry

    def test_compile_failure_is_noop(self, enforcer, loader, profile_dir):
        enforcer.register_profile("p1")
        before = (profile_dir / "p1").read_text()
        bad = SecurityRule(kind=TargetKind.CAPABILITY, pattern="fly")

        ok, message = enforcer.update_profile(None, "p1", [bad])

        assert not ok
        assert "unknown capability" in message
        assert (profile_dir / "p1").read_text() == before
        assert loader.count('load', "p1") == 1

    def test_loader_rejection_keeps_kernel_version(self, enforcer, loader, profile_dir, web_group, shadow_rule):
        """The candidate stays on disk; the kernel keeps the old profile."""
        enforcer.register_profile("web-profile")
        loader.fail_load.add("web-profile")

        ok, message = enforcer.update_profile(web_group, "web-profile", [shadow_rule])

        assert not ok
        assert "Failed to update 1 security rules to default/web/web-profile" in message
        assert "deny /etc/shadow rw," in (profile_dir / "web-profile").read_text()
        assert loader.loaded["web-profile"] == DEFAULT_TEMPLATE.baseline("web-profile")

    def test_foreign_profile_refused(self, enforcer, loader, foreign_profile, shadow_rule):
        content = foreign_profile.read_text()

        ok, message = enforcer.update_profile(None, "p2", [shadow_rule])

        assert not ok
        assert "out-of-control" in message
        assert foreign_profile.read_text() == content
        assert loader.calls == []

    def test_group_policies(self, enforcer, profile_dir, web_group):
        results = enforcer.update_security_policies(web_group)

        assert list(results) == ["web-profile", "worker-profile"]
        assert results["web-profile"] == (True, "Updated 2 security rules to default/web/web-profile")
        assert results["worker-profile"] == (True, "Updated 2 security rules to default/web/worker-profile")

        web = (profile_dir / "web-profile").read_text()
        worker = (profile_dir / "worker-profile").read_text()
        assert "deny capability net_raw," in web
        assert "audit /usr/bin/curl ix," not in web
        assert "audit /usr/bin/curl ix," in worker
        assert "deny capability net_raw," not in worker
        assert not (profile_dir / "unconfined").exists()

    def test_group_partial_failure(self, enforcer, loader, web_group):
        loader.fail_load.add("worker-profile")

        results = enforcer.update_security_policies(web_group)

        assert results["web-profile"][0]
        assert not results["worker-profile"][0]

    def test_identical_updates_identical_bytes(self, enforcer, profile_dir, web_group):
        enforcer.update_security_policies(web_group)
        first = (profile_dir / "web-profile").read_bytes()

        web_group.security_policies.reverse()
        enforcer.update_security_policies(web_group)

        assert (profile_dir / "web-profile").read_bytes() == first


# ===========================================================================
# Startup Sweep
# ===========================================================================

class TestSweep:
    """Tests for sweep_profiles()."""

    def test_removes_only_owned(self, enforcer, loader, profile_dir, stale_profile, foreign_profile):
        (profile_dir / "tunables").mkdir()

        removed = enforcer.sweep_profiles()

        assert removed == ["stale"]
        assert not stale_profile.exists()
        assert foreign_profile.exists()
        assert (profile_dir / "tunables").is_dir()
        assert loader.calls == [('unload', "stale")]

    def test_no_owned_profile_survives(self, enforcer, profile_dir):
        for name in ("a", "b", "c"):
            (profile_dir / name).write_text(DEFAULT_TEMPLATE.baseline(name))

        enforcer.sweep_profiles()

        assert enforcer.owned_profiles() == []

    def test_registry_empty_after_sweep(self, enforcer, stale_profile):
        """Entries for names with no file on disk are dropped too."""
        enforcer.registry.increment("stale")
        enforcer.registry.increment("ghost")
        enforcer.registry.increment("ghost")

        removed = enforcer.sweep_profiles()

        assert removed == ["stale"]
        assert len(enforcer.registry) == 0
        assert enforcer.get_status()["profiles"] == {}

    def test_removal_logged_at_notice(self, enforcer, stale_profile, caplog):
        with caplog.at_level(logging.DEBUG, logger="armor.enforcement.apparmor_enforcer"):
            enforcer.sweep_profiles()

        notices = [r for r in caplog.records if r.levelno == LogLevel.NOTICE.value]
        assert [r.getMessage() for r in notices] == ["Removed a stale AppArmor profile (stale)"]

    def test_unload_failure_is_fatal(self, enforcer, loader, stale_profile):
        loader.fail_unload.add("stale")

        with pytest.raises(EnforcerInitError):
            enforcer.sweep_profiles()

    def test_missing_directory_is_fatal(self, temp_dir, loader):
        enforcer = AppArmorEnforcer(
            EnforcerConfig(profile_dir=str(temp_dir / "missing")),
            loader=loader,
        )
        with pytest.raises(EnforcerInitError):
            enforcer.sweep_profiles()


# ===========================================================================
# Teardown
# ===========================================================================

class TestDestroy:
    """Tests for destroy() and the context manager."""

    def test_detaches_everything(self, enforcer, loader, profile_dir):
        enforcer.register_profile("p1")
        enforcer.register_profile("p1")
        enforcer.register_profile("p3")

        ok, message = enforcer.destroy()

        assert ok
        assert message == "Detached 2 AppArmor profiles"
        assert len(enforcer.registry) == 0
        assert list(profile_dir.iterdir()) == []
        assert loader.loaded == {}

    def test_reports_failures(self, enforcer, loader):
        enforcer.register_profile("p1")
        enforcer.register_profile("p3")
        loader.fail_unload.add("p3")

        ok, message = enforcer.destroy()

        assert not ok
        assert "p3" in message
        assert "p1" not in enforcer.registry

    def test_context_manager(self, config, loader, profile_dir):
        with AppArmorEnforcer(config, loader=loader) as enforcer:
            enforcer.register_profile("p1")
            assert (profile_dir / "p1").exists()

        assert not (profile_dir / "p1").exists()

    def test_status(self, enforcer, profile_dir):
        enforcer.register_profile("p1")
        status = enforcer.get_status()

        assert status['profile_dir'] == str(profile_dir)
        assert status['loader'] == "FakeLoader"
        assert status['profiles'] == {"p1": 1}
        assert status['errors']['total_errors'] == 0
        assert status['recent_errors'] == []

    def test_status_reports_failures(self, enforcer, loader, foreign_profile):
        loader.fail_load.add("p1")
        enforcer.register_profile("p1")
        enforcer.register_profile("p2")

        status = enforcer.get_status()

        assert status['errors']['by_category'] == {
            ErrorCategory.LOADER.value: 1,
            ErrorCategory.OWNERSHIP.value: 1,
        }
        recent = status['recent_errors']
        assert [e['error_type'] for e in recent] == ["LoaderError", "OwnershipConflictError"]
        assert recent[-1]['additional_context'] == {'profile': "p2"}
        assert len(enforcer.get_status(recent_errors=1)['recent_errors']) == 1


# ===========================================================================
# Initialization
# ===========================================================================

class TestInitialize:
    """Tests for initialize()."""

    def test_sweeps_stale_profiles(self, config, loader, stale_profile, foreign_profile):
        with patch("armor.enforcement.apparmor_enforcer.mount_securityfs") as mount:
            enforcer = initialize(config, loader=loader)

        assert isinstance(enforcer, AppArmorEnforcer)
        assert not stale_profile.exists()
        assert foreign_profile.exists()
        mount.assert_not_called()

    def test_injected_registry_is_emptied(self, config, loader, registry, stale_profile):
        registry.increment("stale")
        registry.increment("ghost")

        with patch("armor.enforcement.apparmor_enforcer.mount_securityfs"):
            enforcer = initialize(config, loader=loader, registry=registry)

        assert enforcer.registry is registry
        assert len(registry) == 0
        assert enforcer.owned_profiles() == []

    def test_mounts_securityfs_outside_local_clusters(self, profile_dir, loader):
        config = EnforcerConfig(profile_dir=str(profile_dir), k8s_local=False)

        with patch("armor.enforcement.apparmor_enforcer.mount_securityfs") as mount:
            initialize(config, loader=loader)

        mount.assert_called_once_with(config.securityfs_path, config.mount_timeout)

    def test_config_error_becomes_init_error(self, loader):
        with patch(
            "armor.enforcement.apparmor_enforcer.load_config",
            side_effect=ConfigError("bad timeout"),
        ):
            with pytest.raises(EnforcerInitError, match="bad timeout"):
                initialize(loader=loader)

    def test_invalid_config_rejected(self, profile_dir, loader):
        config = EnforcerConfig(profile_dir=str(profile_dir), k8s_local=True, loader_timeout=0)
        with pytest.raises(EnforcerInitError):
            initialize(config, loader=loader)

    def test_sweep_failure_propagates(self, config, loader, stale_profile):
        loader.fail_unload.add("stale")
        with pytest.raises(EnforcerInitError):
            initialize(config, loader=loader)


# ===========================================================================
# Concurrency
# ===========================================================================

class TestConcurrency:
    """Concurrent register/unregister of one shared profile."""

    def test_parallel_register_unregister(self, enforcer, loader, profile_dir):
        workers = 20

        def run(target):
            threads = [threading.Thread(target=target, args=("shared",)) for _ in range(workers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        run(enforcer.register_profile)
        assert enforcer.registry.count("shared") == workers
        assert (profile_dir / "shared").exists()

        run(enforcer.unregister_profile)
        assert "shared" not in enforcer.registry
        assert not (profile_dir / "shared").exists()
        assert loader.count('unload', "shared") == 1
        assert enforcer.registry._name_locks == {}

    def test_parallel_distinct_names(self, enforcer, profile_dir):
        names = [f"p{i}" for i in range(10)]
        threads = [threading.Thread(target=enforcer.register_profile, args=(n,)) for n in names]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert enforcer.registry.names() == sorted(names)
        assert sorted(p.name for p in profile_dir.iterdir()) == sorted(names)

    def test_update_during_registration(self, enforcer, profile_dir, shadow_rule):
        """Updates and registrations of one name never interleave on disk."""
        block_all = SecurityRule(
            kind=TargetKind.NETWORK, pattern="all", action=RuleAction.BLOCK
        )
        threads = [
            threading.Thread(target=enforcer.register_profile, args=("p1",)),
            threading.Thread(target=enforcer.update_profile, args=(None, "p1", [shadow_rule, block_all])),
            threading.Thread(target=enforcer.register_profile, args=("p1",)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        text = (profile_dir / "p1").read_text()
        assert text.startswith(DEFAULT_TEMPLATE.pre_for("p1"))
        assert text.endswith(DEFAULT_TEMPLATE.post_section)
        assert enforcer.registry.count("p1") == 2
