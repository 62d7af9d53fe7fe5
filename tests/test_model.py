"""Tests for the core data model."""
import pytest

from mergegate.model import CacheKey, Environment, PushEvent, Step


def test_push_event_accepts_integration_branches():
    assert PushEvent(branch="staging", commit="abc").branch == "staging"
    assert PushEvent(branch="trying", commit="abc").branch == "trying"


def test_push_event_rejects_other_branches():
    with pytest.raises(ValueError, match="integration branch"):
        PushEvent(branch="main", commit="abc")


def test_push_event_requires_commit():
    with pytest.raises(ValueError):
        PushEvent(branch="trying", commit="")


def test_linux_and_linux_vm_share_os_family():
    assert Environment.LINUX.os_family == Environment.LINUX_VM.os_family == "Linux"
    assert Environment.WINDOWS.os_family == "Windows"
    assert Environment.MACOS.os_family == "macOS"


def test_step_argv_and_display():
    step = Step(command="cargo", args=("fmt", "--all"))
    assert step.argv == ["cargo", "fmt", "--all"]
    assert step.display == "cargo fmt --all"
    assert Step(command="cargo", name="Format").display == "Format"


def test_cache_key_value_renders_template():
    key = CacheKey(template="{os}-cargo-test-{hash}", environment="Linux", fingerprint="f00")
    assert key.value == "Linux-cargo-test-f00"
    assert str(key) == key.value
