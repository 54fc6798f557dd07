"""
Service management for the RedM stack.

Handles:
- Stack lifecycle (up, down, restart, pull)
- Point-in-time resource snapshots
- Admin UI reachability
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Protocol
import logging

import requests

from .backup import BackupManager
from .config import DeployerSettings
from .errors import ExternalToolError
from .system import CommandRunner

logger = logging.getLogger(__name__)

CONTAINERS = {
    "redm": "redm-server",
    "mariadb": "redm-db",
    "phpmyadmin": "redm-phpmyadmin",
}

STATS_FORMAT = '{"cpu":"{{.CPUPerc}}","memory":"{{.MemUsage}}","net":"{{.NetIO}}"}'


@dataclass
class ResourceSnapshot:
    """Resource usage of one container at one instant."""
    service: str
    running: bool
    cpu_percent: Optional[float] = None
    memory: Optional[str] = None
    network: Optional[str] = None
    taken_at: datetime = field(default_factory=datetime.now)


class RuntimeClient(Protocol):
    def up(self):
        ...

    def down(self):
        ...

    def restart(self):
        ...

    def pull(self):
        ...

    def inspect(self, service: str) -> ResourceSnapshot:
        ...

    def ps(self) -> List[Dict[str, str]]:
        ...


class DockerComposeRuntime:
    """Drives the stack through docker compose."""

    def __init__(self, settings: DeployerSettings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner
        self._compose_binary: Optional[List[str]] = None

    def _resolve_compose_binary(self) -> List[str]:
        for candidate in (["docker", "compose"], ["docker-compose"]):
            try:
                self.runner.run([*candidate, "version"])
            except ExternalToolError:
                continue
            return candidate
        raise ExternalToolError(["docker", "compose", "version"], 127,
                                "Docker Compose plugin or docker-compose binary not found")

    def _run_compose(self, *args: str):
        if self._compose_binary is None:
            self._compose_binary = self._resolve_compose_binary()
        cmd = [
            *self._compose_binary,
            "-f", str(self.settings.compose_file),
            "--project-name", self.settings.project_name,
            *args,
        ]
        return self.runner.run(cmd, cwd=self.settings.base_dir)

    def up(self):
        self._run_compose("up", "-d")

    def down(self):
        self._run_compose("down")

    def restart(self):
        self._run_compose("restart")

    def pull(self):
        self._run_compose("pull")

    def ps(self) -> List[Dict[str, str]]:
        result = self._run_compose("ps", "--format", "json")
        services = []
        for line in result.stdout.strip().splitlines():
            if not line:
                continue
            data = json.loads(line)
            # Older compose versions print a single JSON array
            services.extend(data if isinstance(data, list) else [data])
        return services

    def inspect(self, service: str) -> ResourceSnapshot:
        container = CONTAINERS.get(service, service)
        result = self.runner.run(
            ["docker", "stats", "--no-stream", "--format", STATS_FORMAT, container],
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return ResourceSnapshot(service=service, running=False)

        try:
            data = json.loads(result.stdout.strip().splitlines()[0])
            return ResourceSnapshot(
                service=service,
                running=True,
                cpu_percent=float(data["cpu"].rstrip("%")),
                memory=data["memory"],
                network=data["net"],
            )
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Error parsing stats for {container}: {e}")
            return ResourceSnapshot(service=service, running=True)


class ServiceOrchestrator:
    """
    Lifecycle verbs for the whole stack.

    Calls block until the runtime returns and are never retried.
    """

    def __init__(self, settings: DeployerSettings, runtime: RuntimeClient, backups: BackupManager):
        self.settings = settings
        self.runtime = runtime
        self.backups = backups

    def start(self):
        self.runtime.up()
        logger.info("Services started")

    def stop(self):
        self.runtime.down()
        logger.info("Services stopped")

    def restart(self):
        self.runtime.restart()
        logger.info("Services restarted")

    def update(self):
        """Back up, pull new images, recreate the stack."""
        archive = self.backups.create()
        logger.info(f"Pre-update backup: {archive.name}")
        self.runtime.pull()
        self.runtime.up()
        logger.info("Services updated")

    def inspect(self, service: str) -> ResourceSnapshot:
        return self.runtime.inspect(service)

    def monitor(self) -> Dict[str, ResourceSnapshot]:
        """One snapshot per service."""
        return {name: self.runtime.inspect(name) for name in CONTAINERS}

    def admin_ui_reachable(self) -> bool:
        """Check phpMyAdmin answers over HTTP."""
        url = f"http://127.0.0.1:{self.settings.ports.admin_ui}/"
        try:
            response = requests.get(url, timeout=5)
            return response.status_code < 500
        except requests.RequestException:
            return False
