"""
Process-wide log sink: append to the log file and echo to the terminal.
"""

import logging
import sys
from collections import deque
from pathlib import Path
from typing import List

from .config import DeployerSettings

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(settings: DeployerSettings, level: int = logging.INFO) -> logging.Logger:
    """Attach the file and terminal handlers to the root logger."""
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = logging.FileHandler(settings.log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    return root


def tail_log(path: Path, lines: int = 50) -> List[str]:
    """Return the last lines of the log file."""
    if not path.exists():
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
