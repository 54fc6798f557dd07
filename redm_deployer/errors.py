"""
Exception types for the RedM stack deployer.

Handles:
- Host environment failures (fatal at startup)
- Operator input validation failures (recovered by re-prompting)
- External tool failures (package manager, ufw, docker, archiver)
- Missing backup archives
"""

from pathlib import Path
from typing import List, Optional, Sequence


class DeployerError(Exception):
    """Base class for all deployer errors."""


class HostEnvironmentError(DeployerError):
    """The host cannot run the stack (OS, privileges, disk space)."""

    exit_code = 1


class ValidationError(DeployerError):
    """A configuration value was rejected."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class ExternalToolError(DeployerError):
    """An external command returned a failure."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command: List[str] = [str(part) for part in command]
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"Command '{' '.join(self.command)}' failed with exit code {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class BackupNotFoundError(DeployerError):
    """The requested backup archive does not exist."""

    def __init__(self, path: Path):
        super().__init__(f"Backup file not found: {path}")
        self.path = path


class InstallFailedError(DeployerError):
    """Installation failed; the recovery path has already run."""

    def __init__(self, cause: Exception, recovered: bool = False,
                 restored_from: Optional[Path] = None):
        super().__init__(f"Installation failed: {cause}")
        self.cause = cause
        self.recovered = recovered
        self.restored_from = restored_from
