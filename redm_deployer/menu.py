"""
Interactive command loop for the RedM stack.

The controller is IDLE while waiting for a choice, DISPATCHING while a
command runs, and EXITED once the operator quits. A failed install is the
only error that leaves the loop; every other command failure is logged
and the loop carries on.
"""

from enum import Enum
from typing import Callable, Dict, Optional
import logging

from rich.console import Console
from rich.table import Table

from .backup import BackupManager
from .config import DeployerSettings, InputProvider
from .core import StackInstaller
from .errors import BackupNotFoundError, ExternalToolError
from .logging_setup import tail_log
from .services import ServiceOrchestrator

logger = logging.getLogger(__name__)


class Command(Enum):
    """Menu entries: (number, label)."""
    INSTALL = ("1", "Setup / Install")
    START = ("2", "Start server")
    STOP = ("3", "Stop server")
    RESTART = ("4", "Restart server")
    BACKUP = ("5", "Create backup")
    RESTORE = ("6", "Restore backup")
    LOGS = ("7", "View logs")
    MONITOR = ("8", "Monitor resources")
    UPDATE = ("9", "Update server")
    EXIT = ("0", "Exit")

    @property
    def key(self) -> str:
        return self.value[0]

    @property
    def label(self) -> str:
        return self.value[1]

    @classmethod
    def parse(cls, choice: str) -> Optional["Command"]:
        choice = choice.strip()
        for command in cls:
            if command.key == choice:
                return command
        return None


class MenuState(Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    EXITED = "exited"


class MenuController:
    """Reads commands and dispatches them to the components."""

    def __init__(
        self,
        settings: DeployerSettings,
        installer: StackInstaller,
        orchestrator: ServiceOrchestrator,
        backups: BackupManager,
        input_provider: InputProvider,
        console: Optional[Console] = None,
        log_lines: int = 50,
    ):
        self.settings = settings
        self.installer = installer
        self.orchestrator = orchestrator
        self.backups = backups
        self.input = input_provider
        self.console = console or Console()
        self.log_lines = log_lines
        self.state = MenuState.IDLE

        self.handlers: Dict[Command, Callable[[], None]] = {
            Command.INSTALL: self.installer.install,
            Command.START: self.orchestrator.start,
            Command.STOP: self.orchestrator.stop,
            Command.RESTART: self.orchestrator.restart,
            Command.BACKUP: self.do_backup,
            Command.RESTORE: self.do_restore,
            Command.LOGS: self.do_logs,
            Command.MONITOR: self.do_monitor,
            Command.UPDATE: self.orchestrator.update,
            Command.EXIT: self.do_exit,
        }

    # Loop

    def is_installed(self) -> bool:
        return self.settings.compose_file.exists()

    def run(self) -> int:
        """Run until Exit; returns the process exit code."""
        if not self.is_installed():
            logger.info("No deployment found, running installation")
            self.dispatch(Command.INSTALL)

        while self.state != MenuState.EXITED:
            self.show_menu()
            choice = self.input.ask("Choose")
            command = Command.parse(choice)
            if command is None:
                logger.error(f"Invalid choice: {choice}")
                continue
            self.dispatch(command)
        return 0

    def dispatch(self, command: Command):
        """Run one command to completion, then return to IDLE."""
        self.state = MenuState.DISPATCHING
        try:
            self.handlers[command]()
        except (ExternalToolError, BackupNotFoundError) as e:
            logger.error(f"{command.label} failed: {e}")
        finally:
            if self.state is MenuState.DISPATCHING:
                self.state = MenuState.IDLE

    def show_menu(self):
        self.console.print("\n[bold]RedM Server Management[/bold]")
        for command in Command:
            self.console.print(f"{command.key}) {command.label}")

    # Handlers

    def do_exit(self):
        logger.info("Exiting")
        self.state = MenuState.EXITED

    def do_backup(self):
        archive = self.backups.create()
        self.console.print(f"Backup created: {archive.name}")

    def do_restore(self):
        archives = self.backups.list_archives()
        if not archives:
            logger.error("No backups available")
            return

        table = Table(title="Available backups")
        table.add_column("File")
        table.add_column("Size", justify="right")
        for archive in reversed(archives):
            table.add_row(archive.name, f"{archive.stat().st_size / 1024:.1f} KB")
        self.console.print(table)

        name = self.input.ask("Backup file to restore").strip()
        archive = self.backups.resolve(name)
        self.backups.restore(archive)

    def do_logs(self):
        lines = tail_log(self.settings.log_file, self.log_lines)
        if not lines:
            self.console.print("Log is empty.")
            return
        for line in lines:
            self.console.print(line, markup=False, highlight=False)

    def do_monitor(self):
        snapshots = self.orchestrator.monitor()
        table = Table(title="Resource usage")
        table.add_column("Service")
        table.add_column("Status")
        table.add_column("CPU", justify="right")
        table.add_column("Memory")
        table.add_column("Network")
        for name, snap in snapshots.items():
            table.add_row(
                name,
                "running" if snap.running else "stopped",
                f"{snap.cpu_percent:.1f}%" if snap.cpu_percent is not None else "-",
                snap.memory or "-",
                snap.network or "-",
            )
        self.console.print(table)

        reachable = self.orchestrator.admin_ui_reachable()
        self.console.print(f"phpMyAdmin: {'reachable' if reachable else 'unreachable'}")
