# portguard - Subprocess runner shared by observer, firewall and scheduler
from __future__ import annotations

import shutil
import subprocess
from typing import Callable

from portguard.models import CommandResult

logger = __import__("logging").getLogger("portguard.shell")

DEFAULT_TIMEOUT_SEC = 60

Runner = Callable[..., CommandResult]


def run_command(args: list[str], input: str | None = None, timeout: float | None = DEFAULT_TIMEOUT_SEC) -> CommandResult:
    """Run a command and capture its output. Missing binaries and timeouts
    come back as failed results (127 / 124) instead of exceptions."""
    try:
        r = subprocess.run(args, input=input, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        return CommandResult(list(args), 127, "", f"{args[0]}: command not found")
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(args))
        return CommandResult(list(args), 124, "", "timed out")
    except OSError as e:
        return CommandResult(list(args), 126, "", str(e))
    return CommandResult(list(args), r.returncode, r.stdout or "", r.stderr or "")


def have_command(name: str) -> bool:
    return shutil.which(name) is not None
