# portguard - Listening TCP port observer
from __future__ import annotations

import asyncio
from typing import Any

import psutil

from portguard.models import PortSet
from portguard.shell import Runner, run_command

logger = __import__("logging").getLogger("portguard.collector.ports")

SOURCES = ("auto", "psutil", "ss", "netstat")


def parse_socket_table(stdout: str) -> PortSet:
    """Extract local ports from ``ss -tln`` / ``netstat -tln`` output.

    Takes the local-address column, keeps what follows the last ':' and drops
    anything non-numeric (header rows, '*' wildcards, malformed lines).
    """
    ports: list[str] = []
    for line in stdout.strip().split("\n"):
        parts = line.split()
        if len(parts) < 4:
            continue
        # ss: State Recv-Q Send-Q Local ...; netstat: Proto Recv-Q Send-Q Local ...
        addr = parts[3]
        if ":" not in addr:
            continue
        _, port = addr.rsplit(":", 1)
        ports.append(port)
    return PortSet.from_iterable(ports)


class PortObserver:
    def __init__(self, config: dict[str, Any], runner: Runner = run_command) -> None:
        self.config = config
        self._run = runner
        self._source = (config.get("observer", {}).get("source") or "auto").strip().lower()
        self._timeout = config.get("agent", {}).get("command_timeout_sec", 60)

    async def observe(self) -> PortSet:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.observe_sync)

    def observe_sync(self) -> PortSet:
        if self._source in ("auto", "psutil"):
            try:
                ports = self._from_psutil()
                if ports or self._source == "psutil":
                    return ports
            except (psutil.AccessDenied, psutil.Error, OSError) as e:
                if self._source == "psutil":
                    logger.warning("psutil could not read the socket table: %s", e)
                    return PortSet()
                logger.debug("psutil socket table unavailable (%s); trying ss/netstat", e)
        for cmd in self._commands():
            r = self._run(cmd, timeout=self._timeout)
            if not r.ok or not r.stdout:
                logger.debug("%s failed: %s", cmd[0], r.reason())
                continue
            return parse_socket_table(r.stdout)
        return PortSet()

    def _commands(self) -> list[list[str]]:
        if self._source == "ss":
            return [["ss", "-tlnH"]]
        if self._source == "netstat":
            return [["netstat", "-tln"]]
        return [["ss", "-tlnH"], ["netstat", "-tln"]]

    @staticmethod
    def _from_psutil() -> PortSet:
        ports = []
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            ports.append(conn.laddr.port)
        return PortSet.from_iterable(ports)
