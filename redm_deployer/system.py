"""
Host system helpers.

Handles:
- Running external commands
- Installing packages with apt
- Preflight checks (root, Debian family, free disk space)
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Dict, List, Sequence
import logging

from .config import DeployerSettings
from .errors import ExternalToolError, HostEnvironmentError

logger = logging.getLogger(__name__)

DEBIAN_MARKER = Path("/etc/debian_version")
PREREQUISITE_PACKAGES = ["docker.io", "docker-compose"]


class CommandRunner:
    """Runs external commands; every subprocess call goes through here."""

    def run(
        self,
        cmd: Sequence[str],
        check: bool = True,
        capture: bool = True,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        cmd = [str(part) for part in cmd]
        logger.debug(f"Executing: {' '.join(cmd)}")
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)
        try:
            result = subprocess.run(
                cmd,
                capture_output=capture,
                text=True,
                env=full_env,
                cwd=cwd,
            )
        except FileNotFoundError:
            raise ExternalToolError(cmd, 127, f"{cmd[0]}: command not found")

        if check and result.returncode != 0:
            raise ExternalToolError(cmd, result.returncode, result.stderr or "")
        return result


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


class PackageManager:
    """Installs host packages through apt."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(["dpkg", "-s", package], check=False)
        return result.returncode == 0

    def ensure_installed(self, packages: Sequence[str]) -> List[str]:
        """Install whichever packages are missing; returns the ones installed."""
        missing = [pkg for pkg in packages if not self.is_installed(pkg)]
        if not missing:
            return []

        logger.info(f"Installing packages: {', '.join(missing)}")
        env = {"DEBIAN_FRONTEND": "noninteractive"}
        self.runner.run(["apt-get", "update"], env=env)
        self.runner.run(["apt-get", "install", "-y", *missing], env=env)
        return missing


# === Preflight checks ===

def check_root():
    if os.geteuid() != 0:
        raise HostEnvironmentError("This program must be run as root")


def check_debian(marker: Path = DEBIAN_MARKER):
    if not marker.exists():
        raise HostEnvironmentError("This program requires Debian/Ubuntu")


def check_disk_space(path: Path, min_gb: int):
    """Require min_gb free on the filesystem holding path (or its nearest existing parent)."""
    existing = Path(path)
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    free_gb = shutil.disk_usage(existing).free / (1024 ** 3)
    if free_gb < min_gb:
        raise HostEnvironmentError(
            f"Insufficient disk space: {free_gb:.1f}GB free on {existing}, {min_gb}GB required"
        )


def run_preflight(settings: DeployerSettings, debian_marker: Path = DEBIAN_MARKER):
    """Run all startup checks; raises HostEnvironmentError on the first failure."""
    check_root()
    check_debian(debian_marker)
    check_disk_space(settings.base_dir, settings.min_free_disk_gb)
    logger.info("Preflight checks passed")
