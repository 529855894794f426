# portguard - Shared test fakes for the engine's collaborators
from __future__ import annotations

from typing import Any

import pytest

from portguard.firewall import FirewallAdapter
from portguard.models import CommandResult, FirewallKind, PortSet, RuleResult


class FakeObserver:
    def __init__(self, *observations: list[int]) -> None:
        self.observations = [PortSet.from_iterable(o) for o in observations]
        self.calls = 0

    def set(self, ports: list[int]) -> None:
        self.observations = [PortSet.from_iterable(ports)]

    async def observe(self) -> PortSet:
        idx = min(self.calls, len(self.observations) - 1)
        self.calls += 1
        return self.observations[idx]


class FakeFirewall(FirewallAdapter):
    kind = FirewallKind.UFW
    managed = True

    def __init__(self, fail_ports: tuple[int, ...] = ()) -> None:
        super().__init__(runner=None)
        self.rules: list[int] = []
        self.attempts: list[int] = []
        self.fail_ports = set(fail_ports)

    def _add(self, port: int, protocol: str) -> RuleResult:
        self.attempts.append(port)
        if port in self.fail_ports:
            return RuleResult.failure("backend refused")
        if port not in self.rules:
            self.rules.append(port)
        return RuleResult.success()

    def list_rules(self) -> RuleResult:
        return RuleResult.success("\n".join(f"ALLOW {p}/tcp" for p in self.rules))


class FakeNotifier:
    hostname = "testhost"
    provider = "fake"

    def __init__(self, delivered: bool = True) -> None:
        self.sent: list[tuple[str, str]] = []
        self.delivered = delivered

    async def send(self, subject: str, body: str) -> bool:
        self.sent.append((subject, body))
        return self.delivered


class FakeScheduler:
    def __init__(self) -> None:
        self.entries: list[str] = []

    async def ensure_scheduled_async(self, comment: str, line: str) -> bool:
        if line in self.entries:
            return False
        self.entries += [comment, line]
        return True


class FakeRunner:
    """Records command lines; answers from a {first-args: CommandResult} table."""

    def __init__(self, responses: dict[tuple[str, ...], Any] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []

    def __call__(self, args: list[str], input: str | None = None, timeout: float | None = None) -> CommandResult:
        self.calls.append(list(args))
        self.inputs.append(input)
        for n in range(len(args), 0, -1):
            resp = self.responses.get(tuple(args[:n]))
            if resp is None:
                continue
            if callable(resp):
                return resp(args, input)
            return resp
        return CommandResult(list(args), 0, "", "")


@pytest.fixture
def config(tmp_path) -> dict[str, Any]:
    return {
        "agent": {"state_dir": str(tmp_path / "state"), "log_dir": str(tmp_path / "log"), "require_root": False},
        "schedule": {"enabled": True, "comment": "# FIREWALL PORTS CONF CHECK", "cron": "0 1 * * *", "command": "/usr/local/bin/portguard run"},
        "delta": {"width": 40},
        "activity": {"enabled": True, "file": str(tmp_path / "log" / "activity.jsonl")},
        "notifications": {"provider": "none", "admin_emails": []},
    }
