"""Shared fakes and fixtures for the test suite."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from redm_deployer.config import DeployerSettings
from redm_deployer.errors import ExternalToolError
from redm_deployer.services import ResourceSnapshot

TIMEZONES = {"UTC", "Europe/Paris", "America/New_York"}


class ScriptedInput:
    """Answers questions from a fixed script and records what was asked."""

    def __init__(self, answers: Sequence[str] = ()):
        self.answers = list(answers)
        self.questions: List[str] = []

    def ask(self, question: str, default: Optional[str] = None, secret: bool = False) -> str:
        self.questions.append(question)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {question}")
        return self.answers.pop(0)


class FakeRunner:
    """Records commands; fails any command whose prefix is in fail_on."""

    def __init__(self, fail_on: Sequence[Sequence[str]] = (), outputs: Optional[Dict[tuple, str]] = None,
                 returncodes: Optional[Dict[tuple, int]] = None):
        self.commands: List[List[str]] = []
        self.fail_on = [list(prefix) for prefix in fail_on]
        self.outputs = outputs or {}
        self.returncodes = returncodes or {}

    def _match(self, cmd: List[str], table: Dict[tuple, object]):
        for prefix, value in table.items():
            if cmd[: len(prefix)] == list(prefix):
                return value
        return None

    def run(self, cmd, check=True, capture=True, env=None, cwd=None):
        cmd = [str(part) for part in cmd]
        self.commands.append(cmd)
        returncode = self._match(cmd, self.returncodes) or 0
        if any(cmd[: len(prefix)] == prefix for prefix in self.fail_on):
            returncode = 1
        stdout = self._match(cmd, self.outputs) or ""
        if check and returncode != 0:
            raise ExternalToolError(cmd, returncode, "simulated failure")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")


class FakeRuntime:
    """In-memory stand-in for the container runtime."""

    def __init__(self, fail_on: Sequence[str] = (), fail_once: bool = False):
        self.calls: List[str] = []
        self.fail_on = set(fail_on)
        self.fail_once = fail_once

    def _call(self, verb: str):
        self.calls.append(verb)
        if verb in self.fail_on:
            if self.fail_once:
                self.fail_on.discard(verb)
            raise ExternalToolError(["docker", "compose", verb], 1, "simulated failure")

    def up(self):
        self._call("up")

    def down(self):
        self._call("down")

    def restart(self):
        self._call("restart")

    def pull(self):
        self._call("pull")

    def ps(self):
        self._call("ps")
        return []

    def inspect(self, service: str) -> ResourceSnapshot:
        self._call(f"inspect:{service}")
        return ResourceSnapshot(service=service, running=True, cpu_percent=1.5,
                                memory="100MiB / 2GiB", network="1kB / 2kB")


class FakeFirewall:
    """Records the rule sets it was asked to apply."""

    def __init__(self, fail: bool = False):
        self.applied: List[list] = []
        self.fail = fail

    def apply(self, rules) -> bool:
        self.applied.append(list(rules))
        if self.fail:
            raise ExternalToolError(["ufw", "allow"], 1, "simulated failure")
        return True


@pytest.fixture
def settings(tmp_path: Path) -> DeployerSettings:
    return DeployerSettings(base_dir=tmp_path / "redm")


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
