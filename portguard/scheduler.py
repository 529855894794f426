# portguard - Scheduler registrar: one crontab entry per host
from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path
from typing import Any

from portguard.models import SchedulerError
from portguard.shell import Runner, run_command

logger = __import__("logging").getLogger("portguard.scheduler")

DEFAULT_COMMENT = "# FIREWALL PORTS CONF CHECK"
DEFAULT_CRON = "0 1 * * *"


def default_command() -> str:
    exe = shutil.which("portguard")
    if exe:
        return f"{exe} run"
    argv0 = Path(sys.argv[0]).resolve() if sys.argv and sys.argv[0] else None
    if argv0 and argv0.name == "portguard":
        return f"{argv0} run"
    return f"{sys.executable} -m portguard.main run"


def schedule_entry(config: dict[str, Any]) -> tuple[str, str]:
    """(comment, cron line) built from the schedule section."""
    sched = config.get("schedule", {})
    comment = sched.get("comment") or DEFAULT_COMMENT
    if not comment.startswith("#"):
        comment = f"# {comment}"
    cron = (sched.get("cron") or DEFAULT_CRON).strip()
    command = (sched.get("command") or "").strip() or default_command()
    return comment, f"{cron} {command}"


class CronScheduler:
    """Read-modify-write of the invoking user's crontab via ``crontab -l`` / ``crontab -``."""

    def __init__(self, config: dict[str, Any], runner: Runner = run_command) -> None:
        self.config = config
        self._run = runner
        self._timeout = config.get("agent", {}).get("command_timeout_sec", 60)

    def list_entries(self) -> list[str]:
        r = self._run(["crontab", "-l"], timeout=self._timeout)
        if not r.ok:
            # cronie, vixie and busybox word a missing crontab differently; all exit non-zero
            if not (r.stdout or "").strip():
                logger.debug("crontab -l: %s; treating as empty", r.reason())
                return []
            raise SchedulerError(f"crontab -l failed: {r.reason()}")
        return r.stdout.splitlines()

    def has_entry(self, line: str) -> bool:
        wanted = line.strip()
        return any(e.strip() == wanted for e in self.list_entries())

    def add_entry_if_absent(self, comment: str, line: str) -> bool:
        """Append comment + line unless the exact line is already present. True if added."""
        current = self.list_entries()
        wanted = line.strip()
        if any(e.strip() == wanted for e in current):
            logger.info("Crontab entry already exists, skipping")
            return False
        new = [*current, comment, wanted]
        r = self._run(["crontab", "-"], input="\n".join(new) + "\n", timeout=self._timeout)
        if not r.ok:
            raise SchedulerError(f"Failed to update crontab: {r.reason()}")
        logger.info("Crontab entry added: %s", wanted)
        return True

    def ensure_scheduled(self, comment: str, line: str) -> bool:
        return self.add_entry_if_absent(comment, line)

    async def ensure_scheduled_async(self, comment: str, line: str) -> bool:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.ensure_scheduled, comment, line)
