"""
Firewall configuration for the RedM host.

Builds a default-deny rule set from the port layout and applies it with
ufw. Database and admin UI ports can be limited to a single source
address; SSH and game ports are always open.
"""

import ipaddress
from dataclasses import dataclass
from typing import Optional, List
import logging

from .config import DeployerSettings, InputProvider
from .errors import ExternalToolError
from .system import CommandRunner, PackageManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FirewallRule:
    """A single allow rule."""
    port: int
    protocol: str = "tcp"
    source: Optional[str] = None

    def to_ufw_args(self) -> List[str]:
        if self.source:
            return [
                "allow", "from", self.source,
                "to", "any", "port", str(self.port), "proto", self.protocol,
            ]
        return ["allow", f"{self.port}/{self.protocol}"]

    def describe(self) -> str:
        origin = self.source or "anywhere"
        return f"{self.port}/{self.protocol} from {origin}"


def build_rule_set(settings: DeployerSettings, restrict_to: Optional[str] = None) -> List[FirewallRule]:
    """Rules for the stack; database and admin UI follow restrict_to."""
    ports = settings.ports
    return [
        FirewallRule(ports.ssh, "tcp"),
        FirewallRule(ports.game, "tcp"),
        FirewallRule(ports.game, "udp"),
        FirewallRule(ports.database, "tcp", restrict_to),
        FirewallRule(ports.admin_ui, "tcp", restrict_to),
    ]


def ask_restriction(input_provider: InputProvider) -> Optional[str]:
    """Ask whether sensitive ports should be limited to one address."""
    answer = input_provider.ask(
        "Restrict database and phpMyAdmin access to a single IP? [y/N]", default="n"
    )
    if answer.strip().lower() not in ("y", "yes"):
        return None

    while True:
        address = input_provider.ask("Allowed IP address").strip()
        try:
            return str(ipaddress.ip_address(address))
        except ValueError:
            logger.error(f"Invalid IP address: {address}")


class FirewallManager:
    """Applies rule sets through ufw."""

    def __init__(self, runner: CommandRunner, packages: PackageManager):
        self.runner = runner
        self.packages = packages

    def _ufw(self, *args: str):
        return self.runner.run(["ufw", *args])

    def apply(self, rules: List[FirewallRule]) -> bool:
        """
        Replace the firewall posture with rules.

        Returns False if ufw could not be enabled; that failure is logged
        and tolerated. Any other ufw failure raises ExternalToolError.
        """
        self.packages.ensure_installed(["ufw"])

        self._ufw("--force", "reset")
        self._ufw("default", "deny", "incoming")
        self._ufw("default", "allow", "outgoing")
        for rule in rules:
            self._ufw(*rule.to_ufw_args())
            logger.info(f"Allowed {rule.describe()}")

        try:
            self._ufw("--force", "enable")
        except ExternalToolError as e:
            logger.warning(f"Failed to enable ufw: {e}")
            return False

        logger.info("ufw enabled and configured")
        return True
