"""
Core deployment functionality for the RedM stack.

Handles:
- Docker Compose file generation
- server.cfg generation
- Directory structure setup
- The install flow and its recovery path
"""

from pathlib import Path
from urllib.parse import quote
from typing import Dict, Any
from dataclasses import dataclass
import logging

import yaml

from .backup import BackupManager
from .config import DeployerSettings, Configuration, ConfigManager, InputProvider
from .errors import ExternalToolError, InstallFailedError
from .firewall import FirewallManager, ask_restriction, build_rule_set
from .services import RuntimeClient
from .system import PackageManager, PREREQUISITE_PACKAGES

logger = logging.getLogger(__name__)


def compose_literal(value: str) -> str:
    """Escape a value so Compose does not interpolate it."""
    return value.replace("$", "$$")


@dataclass(frozen=True)
class Artifacts:
    """Rendered deployment files."""
    compose: str
    server_cfg: str


class ArtifactRenderer:
    """Turns a Configuration into the compose file and server.cfg."""

    def __init__(self, settings: DeployerSettings):
        self.settings = settings

    def render(self, config: Configuration) -> Artifacts:
        return Artifacts(
            compose=self.generate_docker_compose(config),
            server_cfg=self.generate_server_cfg(config),
        )

    def compose_definition(self, config: Configuration) -> Dict[str, Any]:
        """Build the docker-compose structure."""
        ports = self.settings.ports
        images = self.settings.images
        base = self.settings.base_dir

        def mount(path: Path, target: str) -> str:
            return f"./{path.relative_to(base)}:{target}"

        return {
            "name": self.settings.project_name,
            "services": {
                "mariadb": {
                    "image": images.mariadb,
                    "container_name": "redm-db",
                    "restart": "always",
                    "environment": {
                        "MYSQL_ROOT_PASSWORD": compose_literal(config.root_password),
                        "MYSQL_DATABASE": compose_literal(config.database),
                        "MYSQL_USER": compose_literal(config.user),
                        "MYSQL_PASSWORD": compose_literal(config.user_password),
                        "TZ": config.timezone,
                    },
                    "ports": [f"{ports.database}:3306"],
                    "volumes": [mount(self.settings.mysql_dir, "/var/lib/mysql")],
                },
                "redm": {
                    "image": f"{images.redm}:{config.version}",
                    "container_name": "redm-server",
                    "restart": "always",
                    "environment": {
                        "TZ": config.timezone,
                    },
                    "ports": [
                        f"{ports.game}:30120/tcp",
                        f"{ports.game}:30120/udp",
                        f"{ports.txadmin}:40120/tcp",
                    ],
                    "volumes": [
                        mount(self.settings.txdata_dir, "/txData"),
                        mount(self.settings.config_dir, "/config"),
                    ],
                    "depends_on": ["mariadb"],
                    "tty": True,
                    "stdin_open": True,
                },
                "phpmyadmin": {
                    "image": images.phpmyadmin,
                    "container_name": "redm-phpmyadmin",
                    "restart": "always",
                    "environment": {
                        "PMA_HOST": "mariadb",
                        "TZ": config.timezone,
                    },
                    "ports": [f"{ports.admin_ui}:80"],
                    "depends_on": ["mariadb"],
                },
            },
        }

    def generate_docker_compose(self, config: Configuration) -> str:
        """Generate docker-compose.yml content."""
        return yaml.dump(self.compose_definition(config), default_flow_style=False, sort_keys=False)

    def generate_server_cfg(self, config: Configuration) -> str:
        """Generate the FXServer configuration."""
        # Percent-encoding also keeps '"' out of the quoted value
        connection = (
            f"mysql://{quote(config.user, safe='')}:{quote(config.user_password, safe='')}"
            f"@mariadb/{quote(config.database, safe='')}?charset=utf8mb4"
        )
        lines = [
            "# RedM server configuration",
            'endpoint_add_tcp "0.0.0.0:30120"',
            'endpoint_add_udp "0.0.0.0:30120"',
            "",
            f'set mysql_connection_string "{connection}"',
            "",
            "set gamename rdr3",
            "sv_enforceGameBuild 1491",
            "sv_maxclients 32",
            'sv_hostname "RedM Server"',
            "",
        ]
        return "\n".join(lines)

    def write(self, artifacts: Artifacts) -> Dict[str, Path]:
        """Write rendered files to disk."""
        targets = {
            "compose": (self.settings.compose_file, artifacts.compose),
            "server_cfg": (self.settings.server_cfg, artifacts.server_cfg),
        }
        written = {}
        for name, (path, content) in targets.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                f.write(content)
            path.chmod(0o600)
            logger.info(f"Written: {path}")
            written[name] = path
        return written


class StackInstaller:
    """
    Runs the install flow.

    Steps: prerequisites, configuration, firewall, artifacts, stack up.
    Any external tool failure triggers a restore of the most recent backup
    when one exists, then InstallFailedError is raised.
    """

    def __init__(
        self,
        settings: DeployerSettings,
        config_manager: ConfigManager,
        renderer: ArtifactRenderer,
        firewall: FirewallManager,
        packages: PackageManager,
        runtime: RuntimeClient,
        backups: BackupManager,
        input_provider: InputProvider,
    ):
        self.settings = settings
        self.config_manager = config_manager
        self.renderer = renderer
        self.firewall = firewall
        self.packages = packages
        self.runtime = runtime
        self.backups = backups
        self.input = input_provider

    def _setup_directories(self):
        """Create required directory structure."""
        for d in [*self.settings.stateful_dirs, self.settings.backup_dir]:
            d.mkdir(parents=True, exist_ok=True)

    def install(self) -> Configuration:
        logger.info("Starting installation")
        try:
            self.packages.ensure_installed(PREREQUISITE_PACKAGES)
            self._setup_directories()

            config = self.config_manager.load_or_init()

            restrict_to = ask_restriction(self.input)
            self.firewall.apply(build_rule_set(self.settings, restrict_to))

            self.renderer.write(self.renderer.render(config))

            logger.info("Starting services...")
            self.runtime.up()
        except ExternalToolError as e:
            logger.error(f"Installation failed: {e}")
            raise self._recover(e) from e

        logger.info("Installation completed")
        return config

    def _recover(self, cause: Exception) -> InstallFailedError:
        latest = self.backups.latest()
        if latest is None:
            logger.error("No backup available to restore")
            return InstallFailedError(cause)

        logger.info(f"Attempting restore from {latest.name}")
        try:
            self.backups.restore(latest)
        except ExternalToolError as e:
            logger.error(f"Restore after failed install also failed: {e}")
            return InstallFailedError(cause)
        return InstallFailedError(cause, recovered=True, restored_from=latest)
