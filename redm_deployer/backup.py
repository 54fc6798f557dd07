"""
Backup and restore functionality for the RedM stack.

Handles:
- Timestamped archives of the stateful directories
- Backup rotation
- Restore (stop, extract, start)
"""

import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Optional, List, Callable, Sequence, Protocol, Tuple
from datetime import datetime
import logging

from .config import DeployerSettings
from .errors import BackupNotFoundError, ExternalToolError

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "redm_backup_"
ARCHIVE_SUFFIX = ".tar.gz"


def archive_sequence(path: Path) -> Tuple[str, int]:
    """
    Creation order encoded in an archive name: (timestamp, counter).

    The first archive of a second has no counter and sorts before its
    '-1', '-2', ... '-10' siblings.
    """
    stem = path.name[len(ARCHIVE_PREFIX):-len(ARCHIVE_SUFFIX)]
    stamp, _, counter = stem.partition("-")
    return stamp, int(counter) if counter.isdigit() else 0


class Archiver(Protocol):
    def create(self, archive: Path, root: Path, members: Sequence[str]):
        ...

    def extract(self, archive: Path, dest: Path):
        ...


class StackControl(Protocol):
    def down(self):
        ...

    def up(self):
        ...


class TarArchiver:
    """gzip-compressed tar archives; members are stored relative to root."""

    def create(self, archive: Path, root: Path, members: Sequence[str]):
        try:
            with tarfile.open(archive, "w:gz") as tar:
                for member in members:
                    tar.add(root / member, arcname=member)
        except (OSError, tarfile.TarError) as e:
            raise ExternalToolError(["tar", "czf", str(archive)], 1, str(e))

    def extract(self, archive: Path, dest: Path):
        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(dest, filter="data")
        except (OSError, tarfile.TarError) as e:
            raise ExternalToolError(["tar", "xzf", str(archive)], 1, str(e))


class BackupManager:
    """
    Manages backups for the RedM stack.

    An archive holds the config, txData and mysql directories. At most
    settings.max_backups archives are kept; the oldest go first.
    """

    def __init__(
        self,
        settings: DeployerSettings,
        stack: StackControl,
        archiver: Optional[Archiver] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.stack = stack
        self.archiver = archiver or TarArchiver()
        self.clock = clock

    @property
    def backup_dir(self) -> Path:
        return self.settings.backup_dir

    def _archive_path(self) -> Path:
        """Timestamped archive name, suffixed if the name is taken."""
        stamp = self.clock().strftime("%Y%m%d_%H%M%S")
        path = self.backup_dir / f"{ARCHIVE_PREFIX}{stamp}{ARCHIVE_SUFFIX}"
        counter = 1
        while path.exists():
            path = self.backup_dir / f"{ARCHIVE_PREFIX}{stamp}-{counter}{ARCHIVE_SUFFIX}"
            counter += 1
        return path

    def create(self) -> Path:
        """Archive the stateful directories, then rotate."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        base = self.settings.base_dir
        members = [
            str(d.relative_to(base)) for d in self.settings.stateful_dirs if d.exists()
        ]
        archive = self._archive_path()

        logger.info(f"Creating backup: {archive.name}")
        try:
            self.archiver.create(archive, base, members)
        except ExternalToolError as e:
            logger.error(f"Backup failed: {e}")
            if archive.exists():
                archive.unlink()
            raise

        logger.info(f"Backup completed: {archive}")
        self.rotate()
        return archive

    def list_archives(self) -> List[Path]:
        """Archives in the backup directory, oldest first."""
        if not self.backup_dir.exists():
            return []
        archives = [
            p for p in self.backup_dir.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}") if p.is_file()
        ]
        archives.sort(key=lambda p: (p.stat().st_mtime, *archive_sequence(p)))
        return archives

    def latest(self) -> Optional[Path]:
        archives = self.list_archives()
        return archives[-1] if archives else None

    def rotate(self) -> List[Path]:
        """Delete the oldest archives beyond max_backups; returns what was removed."""
        archives = self.list_archives()
        excess = len(archives) - self.settings.max_backups
        removed = []
        for archive in archives[:max(excess, 0)]:
            archive.unlink()
            logger.info(f"Removed old backup: {archive.name}")
            removed.append(archive)
        return removed

    def resolve(self, name: str) -> Path:
        """Find an archive by file name; only files directly in backup_dir qualify."""
        candidate = self.backup_dir / Path(name).name
        if Path(name).name != name or not candidate.is_file():
            raise BackupNotFoundError(self.backup_dir / name)
        return candidate

    def restore(self, archive: Path):
        """
        Stop the stack, put the archive contents over the working
        directories, start the stack again.

        The archive is fully extracted into a staging directory before any
        working file is touched, so an unreadable archive leaves the
        working directories as they were. Files not present in the archive
        are left in place.
        """
        if not archive.is_file():
            raise BackupNotFoundError(archive)

        base = self.settings.base_dir
        logger.info(f"Restoring from: {archive}")
        self.stack.down()

        with tempfile.TemporaryDirectory(prefix=".restore-", dir=base) as staging:
            staging_path = Path(staging)
            self.archiver.extract(archive, staging_path)
            try:
                for entry in staging_path.iterdir():
                    target = base / entry.name
                    if entry.is_dir():
                        shutil.copytree(entry, target, dirs_exist_ok=True, symlinks=True)
                    else:
                        shutil.copy2(entry, target)
            except OSError as e:
                logger.error(f"Restore failed partway: {e}")
                raise ExternalToolError(["cp", "-a", str(staging_path), str(base)], 1, str(e))

        self.stack.up()
        logger.info("Restore completed successfully")
