# portguard - Snapshot store: baseline, check, delta and prior delta records
from __future__ import annotations

import fcntl
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from portguard.models import PortSet, RunLockedError, StateDirError

logger = __import__("logging").getLogger("portguard.store")

SNAPSHOT_TAG = "FIREWALL PORTS"
CHECK_TAG = "OPEN PORTS CHECK"

SNAPSHOT_FILE = "firewall_ports.conf"
CHECK_FILE = "firewall_ports.check"
DELTA_FILE = "firewall_ports.log"
PRIOR_DELTA_FILE = "firewall_ports_last.log"
LOCK_FILE = ".lock"

DIR_MODE = 0o750


def render_ports(tag: str, ports: PortSet) -> str:
    return "\n".join([tag, *ports.lines()]) + "\n"


def parse_ports(text: str, tag: str, path: Path | str = "") -> PortSet:
    lines = [l.strip() for l in text.splitlines() if l.strip()]
    if not lines or lines[0] != tag:
        raise StateDirError(f"{path or 'record'}: missing '{tag}' header")
    bad = [l for l in lines[1:] if not l.isdigit()]
    if bad:
        raise StateDirError(f"{path or 'record'}: malformed port line {bad[0]!r}")
    return PortSet.from_iterable(lines[1:])


class SnapshotStore:
    """The four records live side by side in one directory; only the engine writes here."""

    def __init__(self, config: dict[str, Any]) -> None:
        self.config = config
        self.state_dir = Path(config["agent"]["state_dir"]).expanduser()
        self.snapshot_path = self.state_dir / SNAPSHOT_FILE
        self.check_path = self.state_dir / CHECK_FILE
        self.delta_path = self.state_dir / DELTA_FILE
        self.prior_delta_path = self.state_dir / PRIOR_DELTA_FILE

    def ensure_dir(self) -> None:
        if self.state_dir.is_dir():
            return
        logger.info("Creating directory: %s", self.state_dir)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.state_dir, DIR_MODE)
        except OSError as e:
            raise StateDirError(f"Failed to create directory {self.state_dir}: {e}") from e

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Exclusive non-blocking run lock on the state directory."""
        self.ensure_dir()
        path = self.state_dir / LOCK_FILE
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StateDirError(f"Cannot open lock file {path}: {e}") from e
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise RunLockedError(f"Another run holds {path}") from e
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    # --- Snapshot / check ---

    def has_snapshot(self) -> bool:
        return self.snapshot_path.is_file()

    def load_snapshot(self) -> PortSet | None:
        text = self._read(self.snapshot_path)
        return None if text is None else parse_ports(text, SNAPSHOT_TAG, self.snapshot_path)

    def save_snapshot(self, ports: PortSet) -> None:
        self._write(self.snapshot_path, render_ports(SNAPSHOT_TAG, ports))

    def load_check_result(self) -> PortSet | None:
        text = self._read(self.check_path)
        return None if text is None else parse_ports(text, CHECK_TAG, self.check_path)

    def save_check_result(self, ports: PortSet) -> None:
        self._write(self.check_path, render_ports(CHECK_TAG, ports))

    # --- Delta ---

    def rotate_delta_to_prior(self) -> bool:
        """Move the current delta over the prior one. Returns False when there was none."""
        if not self.delta_path.is_file():
            return False
        try:
            os.replace(self.delta_path, self.prior_delta_path)
        except OSError as e:
            raise StateDirError(f"Cannot rotate {self.delta_path}: {e}") from e
        return True

    def save_delta(self, text: str) -> None:
        self._write(self.delta_path, text)

    def load_delta(self) -> str | None:
        return self._read(self.delta_path)

    def load_prior_delta(self) -> str | None:
        return self._read(self.prior_delta_path)

    def reset(self) -> list[Path]:
        removed = []
        for p in (self.snapshot_path, self.check_path, self.delta_path, self.prior_delta_path):
            if p.exists():
                try:
                    p.unlink()
                except OSError as e:
                    raise StateDirError(f"Cannot remove {p}: {e}") from e
                removed.append(p)
        return removed

    # --- I/O ---

    @staticmethod
    def _read(path: Path) -> str | None:
        if not path.is_file():
            return None
        try:
            return path.read_text()
        except OSError as e:
            raise StateDirError(f"Cannot read {path}: {e}") from e

    def _write(self, path: Path, text: str) -> None:
        self.ensure_dir()
        try:
            fd, tmp = tempfile.mkstemp(dir=self.state_dir, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(text)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StateDirError(f"Cannot write {path}: {e}") from e
