# portguard - Firewall adapter: firewalld / ufw / iptables / unmanaged
from __future__ import annotations

from typing import Any, Callable

from portguard.models import FirewallKind, RuleResult, is_valid_port
from portguard.shell import Runner, have_command, run_command

logger = __import__("logging").getLogger("portguard.firewall")


def detect_firewall(
    runner: Runner = run_command,
    which: Callable[[str], bool] = have_command,
) -> FirewallKind:
    """Probe installed backends once: firewalld (active) > ufw > iptables > none."""
    if which("firewall-cmd"):
        r = runner(["systemctl", "is-active", "firewalld"], timeout=10)
        if r.ok:
            return FirewallKind.FIREWALLD
    if which("ufw"):
        return FirewallKind.UFW
    if which("iptables"):
        return FirewallKind.IPTABLES
    return FirewallKind.NONE


class FirewallAdapter:
    """Single entry point over whichever backend was detected at startup."""

    kind = FirewallKind.NONE
    managed = False
    needs_reload = False

    def __init__(self, runner: Runner = run_command, timeout: float = 60) -> None:
        self._run = runner
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self.kind.value

    def add_allow_rule(self, port: int, protocol: str = "tcp") -> RuleResult:
        if not is_valid_port(port):
            return RuleResult.failure(f"invalid port number: {port!r}")
        if protocol != "tcp":
            return RuleResult.failure(f"unsupported protocol: {protocol}")
        return self._add(port, protocol)

    def list_rules(self) -> RuleResult:
        return RuleResult.failure("no firewall detected")

    def reload(self) -> RuleResult:
        return RuleResult.success()

    def _add(self, port: int, protocol: str) -> RuleResult:
        return RuleResult.failure("no firewall detected")

    def _call(self, args: list[str]) -> RuleResult:
        r = self._run(args, timeout=self._timeout)
        if r.ok:
            return RuleResult.success(r.stdout)
        return RuleResult.failure(r.reason(), r.stdout)


class FirewalldAdapter(FirewallAdapter):
    kind = FirewallKind.FIREWALLD
    managed = True
    needs_reload = True

    def _add(self, port: int, protocol: str) -> RuleResult:
        # Already-enabled ports only produce a warning and exit 0.
        return self._call(["firewall-cmd", "--permanent", f"--add-port={port}/{protocol}"])

    def list_rules(self) -> RuleResult:
        return self._call(["firewall-cmd", "--list-ports"])

    def reload(self) -> RuleResult:
        return self._call(["firewall-cmd", "--reload"])


class UfwAdapter(FirewallAdapter):
    kind = FirewallKind.UFW
    managed = True

    def _add(self, port: int, protocol: str) -> RuleResult:
        # ufw skips existing rules ("Skipping adding existing rule").
        return self._call(["ufw", "allow", f"{port}/{protocol}"])

    def list_rules(self) -> RuleResult:
        return self._call(["ufw", "status", "numbered"])


class IptablesAdapter(FirewallAdapter):
    kind = FirewallKind.IPTABLES

    def _add(self, port: int, protocol: str) -> RuleResult:
        return RuleResult.failure("iptables detected but automatic rule configuration is not supported; configure manually")

    def list_rules(self) -> RuleResult:
        return self._call(["iptables", "-L", "INPUT", "-n"])


class UnmanagedAdapter(FirewallAdapter):
    kind = FirewallKind.NONE


_ADAPTERS: dict[FirewallKind, type[FirewallAdapter]] = {
    FirewallKind.FIREWALLD: FirewalldAdapter,
    FirewallKind.UFW: UfwAdapter,
    FirewallKind.IPTABLES: IptablesAdapter,
    FirewallKind.NONE: UnmanagedAdapter,
}


def get_firewall(config: dict[str, Any], runner: Runner = run_command) -> FirewallAdapter:
    backend = (config.get("firewall", {}).get("backend") or "auto").strip().lower()
    timeout = config.get("agent", {}).get("command_timeout_sec", 60)
    if backend == "auto":
        kind = detect_firewall(runner)
    else:
        try:
            kind = FirewallKind(backend)
        except ValueError:
            logger.warning("Unknown firewall backend %r; treating firewall as unmanaged", backend)
            kind = FirewallKind.NONE
    logger.info("Detected firewall system: %s", kind.value)
    return _ADAPTERS[kind](runner, timeout)
