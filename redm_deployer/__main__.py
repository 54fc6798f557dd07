#!/usr/bin/env python3
"""
RedM Stack Deployer - Command Line Interface

Installs and manages a RedM server, MariaDB and phpMyAdmin with Docker
Compose on a Debian-family host.

Usage:
    python -m redm_deployer [--base-dir DIR] [--settings FILE] [--max-backups N]
"""

import argparse
import sys
from pathlib import Path
import logging

from rich.console import Console

from .backup import BackupManager
from .config import DeployerSettings, ConfigManager, ConsoleInput
from .core import ArtifactRenderer, StackInstaller
from .errors import HostEnvironmentError, InstallFailedError
from .firewall import FirewallManager
from .logging_setup import DATE_FORMAT, LOG_FORMAT, setup_logging
from .menu import MenuController
from .services import DockerComposeRuntime, ServiceOrchestrator
from .system import CommandRunner, PackageManager, check_root, run_preflight

logger = logging.getLogger(__name__)


def build_settings(args: argparse.Namespace) -> DeployerSettings:
    """Settings from the optional YAML file, then command-line overrides."""
    if args.settings:
        settings = DeployerSettings.load(Path(args.settings))
    else:
        settings = DeployerSettings()
    if args.base_dir:
        settings.base_dir = Path(args.base_dir)
    if args.max_backups is not None:
        settings.max_backups = args.max_backups
    return settings


def build_controller(settings: DeployerSettings, console: Console) -> MenuController:
    """Wire every component together."""
    runner = CommandRunner()
    packages = PackageManager(runner)
    input_provider = ConsoleInput(console)

    runtime = DockerComposeRuntime(settings, runner)
    backups = BackupManager(settings, runtime)
    orchestrator = ServiceOrchestrator(settings, runtime, backups)
    installer = StackInstaller(
        settings=settings,
        config_manager=ConfigManager(settings, input_provider),
        renderer=ArtifactRenderer(settings),
        firewall=FirewallManager(runner, packages),
        packages=packages,
        runtime=runtime,
        backups=backups,
        input_provider=input_provider,
    )
    return MenuController(settings, installer, orchestrator, backups, input_provider, console)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="RedM Stack Deployer - RedM, MariaDB and phpMyAdmin on Docker"
    )
    parser.add_argument("--base-dir", help="Installation directory (default: /opt/redm)")
    parser.add_argument("--settings", help="YAML file with settings overrides")
    parser.add_argument("--max-backups", type=int, help="Number of backups to keep")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = build_settings(args)

    # Terminal-only until the log file is known to be writable
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=DATE_FORMAT)

    try:
        check_root()
        try:
            setup_logging(settings)
        except OSError as e:
            raise HostEnvironmentError(f"Cannot open log file {settings.log_file}: {e}")
        run_preflight(settings)
    except HostEnvironmentError as e:
        logger.error(str(e))
        return e.exit_code

    console = Console()

    try:
        return build_controller(settings, console).run()
    except InstallFailedError as e:
        if e.recovered:
            logger.error(f"{e}; restored from {e.restored_from.name}")
        else:
            logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
