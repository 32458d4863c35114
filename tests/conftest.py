"""
Pytest configuration and shared fixtures for Armor Daemon tests.

This module provides common fixtures for testing the enforcer components
without apparmor_parser or root: profiles go to a temporary directory and
loading is handled by FakeLoader.
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, Generator, List, Set, Tuple, Union

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from armor.config import EnforcerConfig
from armor.enforcement import (
    AppArmorEnforcer,
    ContainerGroup,
    OWNERSHIP_MARKER,
    ProfileLoader,
    ProfileRegistry,
    RuleAction,
    SecurityRule,
    TargetKind,
)
from armor.utils.error_handling import get_error_aggregator


# ===========================================================================
# Fake Loader
# ===========================================================================

class FakeLoader(ProfileLoader):
    """
    In-memory stand-in for apparmor_parser.

    Records every call, keeps the text of the last successful load per
    profile (the "kernel" view) and fails on demand.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.loaded: Dict[str, str] = {}
        self.fail_load: Set[str] = set()
        self.fail_unload: Set[str] = set()
        self._lock = threading.Lock()

    def load(self, path: Union[str, Path]) -> Tuple[bool, str]:
        path = Path(path)
        with self._lock:
            self.calls.append(('load', path.name))
            if path.name in self.fail_load:
                return False, f"AppArmor parser error for {path}: syntax error"
            self.loaded[path.name] = path.read_text()
            return True, ""

    def unload(self, path: Union[str, Path]) -> Tuple[bool, str]:
        path = Path(path)
        with self._lock:
            self.calls.append(('unload', path.name))
            if path.name in self.fail_unload:
                return False, f"unable to remove {path.name}"
            self.loaded.pop(path.name, None)
            return True, ""

    def count(self, op: str, name: str) -> int:
        with self._lock:
            return self.calls.count((op, name))


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="armor_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def profile_dir(temp_dir: Path) -> Path:
    """Provide an empty AppArmor profile directory."""
    path = temp_dir / "apparmor.d"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def clear_error_aggregator():
    """Keep deduplication state from leaking between tests."""
    get_error_aggregator().clear()
    yield
    get_error_aggregator().clear()


# ===========================================================================
# Enforcer Fixtures
# ===========================================================================

@pytest.fixture
def config(profile_dir: Path) -> EnforcerConfig:
    """Provide a config pointing at the temporary profile directory."""
    return EnforcerConfig(profile_dir=str(profile_dir), k8s_local=True)


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def registry() -> ProfileRegistry:
    return ProfileRegistry()


@pytest.fixture
def enforcer(config: EnforcerConfig, loader: FakeLoader, registry: ProfileRegistry) -> AppArmorEnforcer:
    """Provide an enforcer backed by FakeLoader."""
    return AppArmorEnforcer(config, loader=loader, registry=registry)


@pytest.fixture
def foreign_profile(profile_dir: Path) -> Path:
    """A profile written by someone else (no ownership marker)."""
    path = profile_dir / "p2"
    path.write_text("profile p2 {\n  /bin/true ix,\n}\n")
    return path


@pytest.fixture
def stale_profile(profile_dir: Path) -> Path:
    """An owned profile left behind by a previous run."""
    path = profile_dir / "stale"
    path.write_text(f"{OWNERSHIP_MARKER}\nprofile stale {{\n}}\n")
    return path


# ===========================================================================
# Policy Fixtures
# ===========================================================================

@pytest.fixture
def shadow_rule() -> SecurityRule:
    return SecurityRule(
        kind=TargetKind.FILE,
        pattern="/etc/shadow",
        permissions=frozenset({'read', 'write'}),
        action=RuleAction.BLOCK,
    )


@pytest.fixture
def web_group(shadow_rule: SecurityRule) -> ContainerGroup:
    """A group with two profiles, one unconfined container and scoped rules."""
    return ContainerGroup(
        namespace_name="default",
        container_group_name="web",
        containers=["nginx", "worker", "sidecar"],
        apparmor_profiles={
            "nginx": "web-profile",
            "worker": "worker-profile",
            "sidecar": "unconfined",
        },
        security_policies=[
            shadow_rule,
            SecurityRule(
                kind=TargetKind.CAPABILITY,
                pattern="net_raw",
                action=RuleAction.BLOCK,
                scope=("nginx",),
            ),
            SecurityRule(
                kind=TargetKind.PROCESS,
                pattern="/usr/bin/curl",
                action=RuleAction.AUDIT,
                scope=("worker",),
            ),
        ],
    )
