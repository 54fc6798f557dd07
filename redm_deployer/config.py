"""
Configuration management for the RedM stack deployer.

Handles:
- Installer settings (paths, ports, images, retention bound)
- The persisted server configuration record (KEY=VALUE file)
- Operator prompting and field validation
"""

import os
import re
import tempfile
import zoneinfo
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterable, Protocol
import logging

import yaml
from rich.console import Console
from rich.prompt import Prompt

from .errors import ValidationError

logger = logging.getLogger(__name__)


MIN_CREDENTIAL_LENGTH = 8
VERSION_PATTERN = re.compile(r"[0-9]+")


@dataclass
class PortLayout:
    """Host ports exposed by the stack."""
    ssh: int = 22
    game: int = 30120
    txadmin: int = 40120
    database: int = 3306
    admin_ui: int = 8080


@dataclass
class ImageSet:
    """Container images used by the stack (the application tag is configurable)."""
    redm: str = "spritsail/fivem"
    mariadb: str = "mariadb:10.11"
    phpmyadmin: str = "phpmyadmin:5"


@dataclass
class DeployerSettings:
    """Installer-level settings, passed to every component at construction."""

    project_name: str = "redm"
    base_dir: Path = field(default_factory=lambda: Path("/opt/redm"))
    max_backups: int = 5
    min_free_disk_gb: int = 5
    ports: PortLayout = field(default_factory=PortLayout)
    images: ImageSet = field(default_factory=ImageSet)

    def __post_init__(self):
        self.base_dir = Path(self.base_dir)

    # Directory paths
    @property
    def config_dir(self) -> Path:
        return self.base_dir / "config"

    @property
    def txdata_dir(self) -> Path:
        return self.base_dir / "txData"

    @property
    def mysql_dir(self) -> Path:
        return self.base_dir / "mysql"

    @property
    def backup_dir(self) -> Path:
        return self.base_dir / "backups"

    @property
    def log_file(self) -> Path:
        return self.base_dir / "logs" / "redm-deployer.log"

    # Generated files
    @property
    def compose_file(self) -> Path:
        return self.base_dir / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.config_dir / "server.env"

    @property
    def server_cfg(self) -> Path:
        return self.config_dir / "server.cfg"

    @property
    def stateful_dirs(self) -> List[Path]:
        """Directories captured by backups, in archive order."""
        return [self.config_dir, self.txdata_dir, self.mysql_dir]

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "project_name": self.project_name,
            "base_dir": str(self.base_dir),
            "max_backups": self.max_backups,
            "min_free_disk_gb": self.min_free_disk_gb,
            "ports": {f.name: getattr(self.ports, f.name) for f in fields(self.ports)},
            "images": {f.name: getattr(self.images, f.name) for f in fields(self.images)},
        }

    def save(self, path: Path):
        """Save settings to YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: Path) -> "DeployerSettings":
        """Load settings overrides from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        settings = cls(
            project_name=data.get("project_name", "redm"),
            base_dir=Path(data.get("base_dir", "/opt/redm")),
            max_backups=int(data.get("max_backups", 5)),
            min_free_disk_gb=int(data.get("min_free_disk_gb", 5)),
        )
        for name, value in (data.get("ports") or {}).items():
            if hasattr(settings.ports, name):
                setattr(settings.ports, name, int(value))
        for name, value in (data.get("images") or {}).items():
            if hasattr(settings.images, name):
                setattr(settings.images, name, str(value))
        return settings


# === Server configuration record ===

@dataclass(frozen=True)
class FieldSpec:
    """How a configuration field is prompted for."""
    key: str
    question: str
    default: str = ""
    secret: bool = False


FIELD_SPECS: List[FieldSpec] = [
    FieldSpec("MYSQL_ROOT_PASSWORD", "MariaDB root password (min. 8 characters)", secret=True),
    FieldSpec("MYSQL_DATABASE", "Database name", default="redm"),
    FieldSpec("MYSQL_USER", "Database user", default="redm"),
    FieldSpec("MYSQL_PASSWORD", "Database user password (min. 8 characters)", secret=True),
    FieldSpec("TZ", "Timezone (e.g. Europe/Paris)"),
    FieldSpec("REDM_VERSION", "RedM server version ('latest' or a build number)"),
]

FIELD_KEYS = [spec.key for spec in FIELD_SPECS]


@dataclass
class Configuration:
    """The persisted deployment configuration."""
    root_password: str = ""
    database: str = ""
    user: str = ""
    user_password: str = ""
    timezone: str = ""
    version: str = ""

    _KEY_MAP = {
        "MYSQL_ROOT_PASSWORD": "root_password",
        "MYSQL_DATABASE": "database",
        "MYSQL_USER": "user",
        "MYSQL_PASSWORD": "user_password",
        "TZ": "timezone",
        "REDM_VERSION": "version",
    }

    def get(self, key: str) -> str:
        return getattr(self, self._KEY_MAP[key])

    def set(self, key: str, value: str):
        setattr(self, self._KEY_MAP[key], value)

    def missing_keys(self) -> List[str]:
        """Keys whose value is still empty."""
        return [key for key in FIELD_KEYS if not self.get(key)]

    def to_env(self) -> Dict[str, str]:
        return {key: self.get(key) for key in FIELD_KEYS}

    @classmethod
    def from_env(cls, values: Dict[str, str]) -> "Configuration":
        config = cls()
        for key in FIELD_KEYS:
            config.set(key, values.get(key, ""))
        return config

    @classmethod
    def with_defaults(cls) -> "Configuration":
        """A fresh record with only the defaulted fields filled."""
        config = cls()
        for spec in FIELD_SPECS:
            config.set(spec.key, spec.default)
        return config


def validate_field(name: str, value: str, timezones: Optional[Iterable[str]] = None):
    """
    Validate a single configuration value.

    Raises ValidationError when the value is rejected. Field names without
    a rule are accepted as-is.
    """
    if name in ("MYSQL_ROOT_PASSWORD", "MYSQL_PASSWORD"):
        if len(value) < MIN_CREDENTIAL_LENGTH:
            raise ValidationError(
                name, f"must be at least {MIN_CREDENTIAL_LENGTH} characters long"
            )
    elif name == "TZ":
        known = timezones if timezones is not None else zoneinfo.available_timezones()
        if value not in known:
            raise ValidationError(name, f"unknown timezone '{value}'")
    elif name == "REDM_VERSION":
        if value != "latest" and not VERSION_PATTERN.fullmatch(value):
            raise ValidationError(name, "must be 'latest' or a build number")


# === Operator input ===

class InputProvider(Protocol):
    """Source of operator answers."""

    def ask(self, question: str, default: Optional[str] = None, secret: bool = False) -> str:
        ...


class ConsoleInput:
    """Reads answers from the terminal."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def ask(self, question: str, default: Optional[str] = None, secret: bool = False) -> str:
        if default:
            return Prompt.ask(question, default=default, password=secret, console=self.console)
        return Prompt.ask(question, password=secret, console=self.console)


# === Persistence ===

def parse_env_file(path: Path) -> Dict[str, str]:
    """
    Parse a KEY=VALUE file, ignoring blank lines and comments.

    Values are kept verbatim so whitespace in a credential survives a
    save and reload.
    """
    values: Dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = raw_line.split("=", 1)
        values[key.strip()] = value
    return values


def write_env_file(path: Path, values: Dict[str, str]):
    """Rewrite a KEY=VALUE file in one step."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{key}={value}\n" for key, value in values.items())
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ConfigManager:
    """
    Collects, validates and persists the deployment configuration.

    The configuration file is only ever rewritten as a whole, so a reader
    never sees a half-filled record.
    """

    def __init__(
        self,
        settings: DeployerSettings,
        input_provider: InputProvider,
        timezones: Optional[Iterable[str]] = None,
    ):
        self.settings = settings
        self.input = input_provider
        self._timezones = set(timezones) if timezones is not None else None

    @property
    def path(self) -> Path:
        return self.settings.env_file

    def exists(self) -> bool:
        return self.path.exists()

    def validate(self, name: str, value: str):
        """Raise ValidationError if value is not acceptable for name."""
        if name == "TZ" and self._timezones is None:
            self._timezones = zoneinfo.available_timezones()
        validate_field(name, value, self._timezones)

    def load(self) -> Configuration:
        return Configuration.from_env(parse_env_file(self.path))

    def save(self, config: Configuration):
        write_env_file(self.path, config.to_env())
        logger.info(f"Written: {self.path}")

    def load_or_init(self) -> Configuration:
        """
        Load the persisted configuration, prompting for any empty field.

        On first run the record starts from defaults and every field
        without one is prompted for. Nothing is written when no field
        had to be filled.
        """
        if self.exists():
            config = self.load()
            logger.info(f"Loaded existing configuration from {self.path}")
        else:
            config = Configuration.with_defaults()
            logger.info("No existing configuration found, starting fresh")

        missing = config.missing_keys()
        if not missing and self.exists():
            return config

        specs = {spec.key: spec for spec in FIELD_SPECS}
        for key in missing:
            config.set(key, self.prompt_field(specs[key]))

        self.save(config)
        return config

    def prompt_field(self, spec: FieldSpec) -> str:
        """Ask for a field until the answer validates."""
        while True:
            answer = self.input.ask(spec.question, default=spec.default or None, secret=spec.secret)
            if not answer and spec.default:
                answer = spec.default
            if not spec.secret:
                answer = answer.strip()
            try:
                self.validate(spec.key, answer)
            except ValidationError as e:
                logger.error(f"Invalid value for {e.field}: {e.message}")
                continue
            return answer
