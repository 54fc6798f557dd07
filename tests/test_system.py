"""Tests for host helpers and preflight checks."""
from __future__ import annotations

from collections import namedtuple
from pathlib import Path

import pytest

from redm_deployer import system
from redm_deployer.config import DeployerSettings
from redm_deployer.errors import ExternalToolError, HostEnvironmentError
from redm_deployer.system import CommandRunner, PackageManager

from conftest import FakeRunner

DiskUsage = namedtuple("DiskUsage", "total used free")


def test_runner_raises_on_failure() -> None:
    runner = CommandRunner()
    assert runner.run(["true"]).returncode == 0
    with pytest.raises(ExternalToolError) as excinfo:
        runner.run(["false"])
    assert excinfo.value.returncode == 1
    assert runner.run(["false"], check=False).returncode == 1


def test_runner_missing_binary() -> None:
    with pytest.raises(ExternalToolError) as excinfo:
        CommandRunner().run(["definitely-not-a-real-binary-xyz"])
    assert excinfo.value.returncode == 127


def test_package_manager_installs_only_missing() -> None:
    runner = FakeRunner(returncodes={("dpkg", "-s", "docker-compose"): 1})

    installed = PackageManager(runner).ensure_installed(["docker.io", "docker-compose"])

    assert installed == ["docker-compose"]
    assert runner.commands[-2] == ["apt-get", "update"]
    assert runner.commands[-1] == ["apt-get", "install", "-y", "docker-compose"]


def test_package_manager_noop_when_present() -> None:
    runner = FakeRunner()
    assert PackageManager(runner).ensure_installed(["ufw"]) == []
    assert all(cmd[0] == "dpkg" for cmd in runner.commands)


def test_check_root(monkeypatch) -> None:
    monkeypatch.setattr(system.os, "geteuid", lambda: 1000)
    with pytest.raises(HostEnvironmentError):
        system.check_root()
    monkeypatch.setattr(system.os, "geteuid", lambda: 0)
    system.check_root()


def test_check_debian(tmp_path: Path) -> None:
    marker = tmp_path / "debian_version"
    with pytest.raises(HostEnvironmentError):
        system.check_debian(marker)
    marker.write_text("12.5\n")
    system.check_debian(marker)


def test_check_disk_space_uses_nearest_parent(tmp_path: Path, monkeypatch) -> None:
    seen = []

    def fake_usage(path):
        seen.append(Path(path))
        return DiskUsage(100, 99, 2 * 1024 ** 3)

    monkeypatch.setattr(system.shutil, "disk_usage", fake_usage)

    system.check_disk_space(tmp_path / "not" / "yet", 1)
    assert seen == [tmp_path]
    with pytest.raises(HostEnvironmentError):
        system.check_disk_space(tmp_path, 5)


def test_preflight_order(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(system.os, "geteuid", lambda: 0)
    settings = DeployerSettings(base_dir=tmp_path / "redm")

    with pytest.raises(HostEnvironmentError, match="Debian"):
        system.run_preflight(settings, debian_marker=tmp_path / "missing")
