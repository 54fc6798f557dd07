"""
RedM Stack Deployer
===================

Installs and operates a self-hosted RedM game server stack on a single
Debian-family host.

Features:
- Docker Compose generation and management (RedM, MariaDB, phpMyAdmin)
- Interactive configuration with validation
- ufw firewall setup with optional source restriction
- Timestamped backups with rotation, and restore
- Interactive management menu

License: MIT
"""

__version__ = "1.0.0"

from .config import DeployerSettings, Configuration, ConfigManager
from .core import ArtifactRenderer, StackInstaller
from .firewall import FirewallManager, FirewallRule
from .services import ServiceOrchestrator
from .backup import BackupManager
from .menu import MenuController

__all__ = [
    "DeployerSettings",
    "Configuration",
    "ConfigManager",
    "ArtifactRenderer",
    "StackInstaller",
    "FirewallManager",
    "FirewallRule",
    "ServiceOrchestrator",
    "BackupManager",
    "MenuController",
]
