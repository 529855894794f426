#!/usr/bin/env python3
# portguard - Entrypoint for one scheduled reconciliation run
from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any

from portguard.config import load_config, validate_config
from portguard.models import PortGuardError, PrivilegeError, RunLockedError, RunOutcome

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("portguard")


def _config_path_from_argv() -> str | None:
    if "--config" not in sys.argv and "-c" not in sys.argv:
        return None
    for i, a in enumerate(sys.argv[1:], 1):
        if a in ("--config", "-c") and i < len(sys.argv) - 1:
            return sys.argv[i + 1]
    return None


def check_privileges(config: dict[str, Any]) -> None:
    if not config.get("agent", {}).get("require_root", True):
        return
    if os.geteuid() != 0:
        raise PrivilegeError("This program must be run as root for firewall and crontab operations")


async def _run_once(config: dict[str, Any]) -> RunOutcome:
    from portguard.engine import build_engine
    from portguard.reporter.activity import ActivityLogger

    activity = ActivityLogger(config)
    await activity.start()
    try:
        engine = build_engine(config, activity)
        try:
            with engine.store.lock():
                return await engine.run()
        except RunLockedError as e:
            logger.warning("%s; skipping this run", e)
            return RunOutcome.LOCKED
    finally:
        await activity.stop()


def run(config: dict[str, Any]) -> int:
    """Run one reconciliation and map the result to a process exit status."""
    logger.info("Starting firewall port monitoring")
    errs = validate_config(config)
    if errs:
        for e in errs:
            logger.error("Invalid configuration: %s", e)
        return 1
    try:
        check_privileges(config)
        outcome = asyncio.run(_run_once(config))
    except PortGuardError as e:
        logger.error("ERROR: %s", e)
        return e.exit_code
    logger.info("Firewall port monitoring completed: %s", outcome.value)
    return 0


def _send_error_report(config: dict[str, Any], error: BaseException) -> None:
    """Best-effort mail to admins about an unexpected crash. Swallows all exceptions."""
    try:
        import traceback
        from portguard.reporter.email_reporter import EmailReporter

        reporter = EmailReporter(config.get("notifications", {}))
        body = f"portguard encountered an error.\n\nException: {type(error).__name__}: {error}\n\n"
        body += "Traceback:\n" + traceback.format_exc()
        asyncio.run(reporter.send(f"ERROR: {str(error)[:80]}", body))
    except Exception:
        pass


def main() -> None:
    # Any argument other than --config/-c (and a bare "run") goes to the full CLI
    extra = [a for a in sys.argv[1:] if a not in ("--config", "-c") and a != _config_path_from_argv()]
    if extra and extra != ["run"]:
        from portguard.cli import main as cli_main
        cli_main()
        return
    try:
        config = load_config(_config_path_from_argv())
    except (OSError, ValueError) as e:
        logger.error("Cannot load configuration: %s", e)
        sys.exit(1)
    try:
        code = run(config)
    except Exception as e:
        _send_error_report(config, e)
        raise
    sys.exit(code)


if __name__ == "__main__":
    main()
