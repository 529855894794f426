# portguard - Activity logger (one JSON line per run decision)
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = __import__("logging").getLogger("portguard.activity")


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ActivityLogger:
    """Logs every run decision: outcome, rule application, schedule, notification."""

    def __init__(self, config: dict[str, Any]) -> None:
        """config: full app config (uses activity + agent sections)."""
        self.config = config
        act = config.get("activity", {})
        log_dir = Path(config.get("agent", {}).get("log_dir", "/var/log/portguard"))
        self._path = Path(act.get("file") or str(log_dir / "activity.jsonl"))
        self._file: Any = None
        self._lock: asyncio.Lock | None = None
        self._enabled = act.get("enabled", True)

    @property
    def path(self) -> Path:
        return self._path

    async def start(self) -> None:
        if not self._enabled:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._path, "a")
        except OSError as e:
            logger.warning("Activity log disabled, cannot open %s: %s", self._path, e)
            self._file = None

    async def stop(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    async def _write(self, record: dict[str, Any]) -> None:
        if not self._enabled or not self._file:
            return
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            line = json.dumps({"ts": _utcnow(), **record}) + "\n"
            self._file.write(line)
            self._file.flush()

    async def log_run(
        self,
        outcome: str,
        ports: list[int],
        duration_sec: float,
        summary: str = "",
        error: str | None = None,
    ) -> None:
        await self._write({
            "type": "run",
            "outcome": outcome,
            "ports": ports,
            "duration_sec": round(duration_sec, 3),
            "summary": summary,
            "error": error,
        })

    async def log_rule(self, backend: str, port: int, ok: bool, reason: str = "") -> None:
        await self._write({
            "type": "firewall_rule",
            "backend": backend,
            "port": port,
            "protocol": "tcp",
            "ok": ok,
            "reason": reason,
        })

    async def log_schedule(self, line: str, added: bool, error: str | None = None) -> None:
        await self._write({"type": "schedule", "line": line, "added": added, "error": error})

    async def log_notification(self, subject: str, delivered: bool, provider: str) -> None:
        await self._write({
            "type": "notification",
            "subject": subject,
            "delivered": delivered,
            "provider": provider,
        })
