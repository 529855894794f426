# portguard - Data models (PortSet, Delta, RuleResult, RunOutcome, errors)
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

MIN_PORT = 1
MAX_PORT = 65535

# --- Enums ---


class RunOutcome(str, Enum):
    INITIALIZED = "initialized"
    NO_CHANGE = "no_change"
    FIRST_COMPARISON = "first_comparison"  # no prior delta yet; never notifies
    CHANGE_NOTIFIED = "change_notified"
    CHANGE_SUPPRESSED = "change_suppressed_duplicate"
    LOCKED = "locked"


class FirewallKind(str, Enum):
    FIREWALLD = "firewalld"  # stateful manager, permanent rules + reload
    UFW = "ufw"  # allow-list tool, applies immediately
    IPTABLES = "iptables"  # raw packet filter, manual action only
    NONE = "none"


# --- Errors ---


class PortGuardError(Exception):
    """Base class for errors that end a run with a non-zero exit status."""

    exit_code = 1


class NoPortsObservedError(PortGuardError):
    pass


class StateDirError(PortGuardError):
    pass


class PrivilegeError(PortGuardError):
    pass


class SchedulerError(PortGuardError):
    pass


class RunLockedError(PortGuardError):
    """Another run holds the state directory lock. Not a failure."""

    exit_code = 0


# --- Values ---


def is_valid_port(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return MIN_PORT <= value <= MAX_PORT


def _coerce_port(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if is_valid_port(value) else None
    if isinstance(value, str):
        s = value.strip()
        if s.isdigit() and s.isascii():
            n = int(s)
            return n if is_valid_port(n) else None
    return None


@dataclass(frozen=True)
class PortSet:
    """Listening TCP ports at one point in time: unique, ascending, in range."""

    ports: tuple[int, ...] = ()

    @classmethod
    def from_iterable(cls, values: Iterable[Any]) -> PortSet:
        found = {p for p in (_coerce_port(v) for v in values) if p is not None}
        return cls(tuple(sorted(found)))

    def lines(self) -> list[str]:
        return [str(p) for p in self.ports]

    def __len__(self) -> int:
        return len(self.ports)

    def __iter__(self):
        return iter(self.ports)

    def __contains__(self, port: object) -> bool:
        return port in self.ports

    def __bool__(self) -> bool:
        return bool(self.ports)


@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def reason(self) -> str:
        msg = (self.stderr or self.stdout or "").strip().splitlines()
        tail = msg[-1] if msg else ""
        return f"exit {self.returncode}: {tail}" if tail else f"exit {self.returncode}"


@dataclass
class RuleResult:
    ok: bool
    reason: str = ""
    output: str = ""

    @classmethod
    def success(cls, output: str = "") -> RuleResult:
        return cls(True, "", output)

    @classmethod
    def failure(cls, reason: str, output: str = "") -> RuleResult:
        return cls(False, reason, output)


# --- Delta ---

MARKER_COMMON = " "
MARKER_REMOVED = "<"
MARKER_ADDED = ">"
MARKER_CHANGED = "|"
CHANGE_MARKERS = (MARKER_REMOVED, MARKER_ADDED, MARKER_CHANGED)


@dataclass(frozen=True)
class DeltaLine:
    left: str
    marker: str
    right: str

    @property
    def is_change(self) -> bool:
        return self.marker in CHANGE_MARKERS


@dataclass
class Delta:
    lines: list[DeltaLine] = field(default_factory=list)
    width: int = 40
    text: str = ""

    @property
    def has_changes(self) -> bool:
        return any(line.is_change for line in self.lines)

    def count(self, marker: str) -> int:
        return sum(1 for line in self.lines if line.marker == marker)

    @property
    def added(self) -> list[str]:
        return [l.right for l in self.lines if l.marker in (MARKER_ADDED, MARKER_CHANGED)]

    @property
    def removed(self) -> list[str]:
        return [l.left for l in self.lines if l.marker in (MARKER_REMOVED, MARKER_CHANGED)]

    def summary(self) -> str:
        return (
            f"added={self.count(MARKER_ADDED)} removed={self.count(MARKER_REMOVED)} "
            f"changed={self.count(MARKER_CHANGED)}"
        )
