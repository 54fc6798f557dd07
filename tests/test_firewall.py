"""Tests for rule-set construction and ufw application."""
from __future__ import annotations

import pytest

from redm_deployer.config import DeployerSettings
from redm_deployer.errors import ExternalToolError
from redm_deployer.firewall import FirewallManager, FirewallRule, ask_restriction, build_rule_set
from redm_deployer.system import PackageManager

from conftest import FakeRunner, ScriptedInput


def test_open_rule_set(settings: DeployerSettings) -> None:
    rules = build_rule_set(settings)

    assert rules == [
        FirewallRule(22, "tcp"),
        FirewallRule(30120, "tcp"),
        FirewallRule(30120, "udp"),
        FirewallRule(3306, "tcp"),
        FirewallRule(8080, "tcp"),
    ]


def test_restricted_rule_set(settings: DeployerSettings) -> None:
    """Only database and admin UI are limited to the chosen address."""
    rules = build_rule_set(settings, restrict_to="203.0.113.5")

    unrestricted = {(r.port, r.protocol) for r in rules if r.source is None}
    restricted = {(r.port, r.protocol): r.source for r in rules if r.source is not None}

    assert unrestricted == {(22, "tcp"), (30120, "tcp"), (30120, "udp")}
    assert restricted == {(3306, "tcp"): "203.0.113.5", (8080, "tcp"): "203.0.113.5"}


def test_rule_ufw_arguments() -> None:
    assert FirewallRule(22).to_ufw_args() == ["allow", "22/tcp"]
    assert FirewallRule(3306, "tcp", "203.0.113.5").to_ufw_args() == [
        "allow", "from", "203.0.113.5", "to", "any", "port", "3306", "proto", "tcp",
    ]


def test_apply_resets_denies_then_allows(settings: DeployerSettings) -> None:
    runner = FakeRunner()
    manager = FirewallManager(runner, PackageManager(runner))

    assert manager.apply(build_rule_set(settings)) is True

    ufw_calls = [cmd[1:] for cmd in runner.commands if cmd[0] == "ufw"]
    assert ufw_calls[:3] == [
        ["--force", "reset"],
        ["default", "deny", "incoming"],
        ["default", "allow", "outgoing"],
    ]
    assert ufw_calls[-1] == ["--force", "enable"]
    assert ["allow", "30120/udp"] in ufw_calls


def test_apply_installs_ufw_when_missing(settings: DeployerSettings) -> None:
    runner = FakeRunner(returncodes={("dpkg", "-s", "ufw"): 1})
    manager = FirewallManager(runner, PackageManager(runner))

    manager.apply(build_rule_set(settings))

    assert ["apt-get", "install", "-y", "ufw"] in runner.commands


def test_enable_failure_is_tolerated(settings: DeployerSettings) -> None:
    runner = FakeRunner(fail_on=[["ufw", "--force", "enable"]])
    manager = FirewallManager(runner, PackageManager(runner))

    assert manager.apply(build_rule_set(settings)) is False


def test_rule_failure_propagates(settings: DeployerSettings) -> None:
    runner = FakeRunner(fail_on=[["ufw", "allow"]])
    manager = FirewallManager(runner, PackageManager(runner))

    with pytest.raises(ExternalToolError):
        manager.apply(build_rule_set(settings))


def test_ask_restriction_declined() -> None:
    assert ask_restriction(ScriptedInput(["n"])) is None


def test_ask_restriction_reprompts_bad_address() -> None:
    answers = ScriptedInput(["y", "not-an-ip", "203.0.113.5"])
    assert ask_restriction(answers) == "203.0.113.5"
    assert len(answers.questions) == 3
