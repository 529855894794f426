# portguard - CLI: run, inspect state, reset baseline, schedule, configure
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any

from portguard import __version__
from portguard.config import (
    find_config_path,
    get_default_config,
    get_default_config_path,
    load_config,
    save_config,
    set_config_key,
    validate_config,
)
from portguard.models import PortGuardError


def _prompt_yn(msg: str, default: bool = False) -> bool:
    d = "Y/n" if default else "y/N"
    out = input(f"  {msg} [{d}]: ").strip().lower()
    if not out:
        return default
    return out in ("y", "yes", "1")


# --- Run / inspect ---

def cmd_run(config: dict[str, Any]) -> int:
    from portguard.main import run
    return run(config)


def cmd_status(config: dict[str, Any], config_path: str | None) -> None:
    """Show config path, version, state files and detected firewall."""
    from portguard.firewall import detect_firewall
    from portguard.reporter.activity import ActivityLogger
    from portguard.store import SnapshotStore

    store = SnapshotStore(config)
    resolved = find_config_path(config_path)
    print("portguard status")
    print("  Version: ", __version__)
    print("  Config:  ", resolved or config_path or os.environ.get("PORTGUARD_CONFIG") or "(defaults only)")
    print("  State:   ", store.state_dir)
    print("  Activity:", ActivityLogger(config).path)
    for label, path in (
        ("Baseline", store.snapshot_path),
        ("Check", store.check_path),
        ("Delta", store.delta_path),
        ("Prior", store.prior_delta_path),
    ):
        print(f"  {label + ':':<9} {path} ({'present' if path.exists() else 'absent'})")
    backend = config.get("firewall", {}).get("backend", "auto")
    detected = detect_firewall().value if backend == "auto" else backend
    print("  Firewall:", detected)


def cmd_show(config: dict[str, Any]) -> None:
    """Print baseline, last check and last delta."""
    from portguard.delta import parse_delta
    from portguard.store import SnapshotStore

    store = SnapshotStore(config)
    snapshot = store.load_snapshot()
    if snapshot is None:
        print("No baseline yet; the next run will initialize.")
        return
    print("Baseline:", " ".join(snapshot.lines()))
    check = store.load_check_result()
    print("Current: ", " ".join(check.lines()) if check is not None else "(no check yet)")
    text = store.load_delta()
    if text is None:
        return
    delta = parse_delta(text, config.get("delta", {}).get("width", 40))
    print(f"\nDelta ({delta.summary()}):")
    print(text, end="")


def cmd_reset(config: dict[str, Any], yes: bool) -> None:
    """Delete the records so the next run re-initializes from the current ports."""
    from portguard.store import SnapshotStore

    store = SnapshotStore(config)
    if not yes and not _prompt_yn(f"Remove baseline and delta records in {store.state_dir}?", False):
        print("Aborted.")
        return
    with store.lock():
        removed = store.reset()
    if removed:
        for p in removed:
            print(f"Removed {p}")
    else:
        print("Nothing to remove.")
    print("The next run will record a new baseline and re-apply firewall rules.")


def cmd_schedule(config: dict[str, Any]) -> None:
    from portguard.scheduler import CronScheduler, schedule_entry

    comment, line = schedule_entry(config)
    added = CronScheduler(config).ensure_scheduled(comment, line)
    print(("Added: " if added else "Already scheduled: ") + line)


async def cmd_test(config: dict[str, Any]) -> bool:
    """Send a test notification through the configured provider."""
    from portguard.reporter.email_reporter import EmailReporter

    notif = config.get("notifications", {})
    reporter = EmailReporter(notif)
    print(f"  Provider:     {reporter.provider}")
    print(f"  Admin emails: {notif.get('admin_emails', []) or '(none)'}")
    ok = await reporter.send("Test notification", "This is a test email from portguard. If you received this, email delivery is working.")
    print("  Email: sent (check your inbox)" if ok else "  Email: NOT delivered (see log above)")
    return ok


# --- Config commands ---

def cmd_setup(config_path: str | None, force: bool) -> None:
    """Create state/log directories and a default config file."""
    path = Path(config_path) if config_path else get_default_config_path()
    cfg = load_config(path) if path.exists() and not force else get_default_config()
    for key in ("state_dir", "log_dir"):
        d = Path(cfg["agent"][key]).expanduser()
        try:
            d.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            print(f"Cannot create {d} (permission denied). Run as root or set agent.{key}.", file=sys.stderr)
            sys.exit(1)
    if path.exists() and not force:
        print(f"Config already exists at {path} (use --force to overwrite)")
        return
    save_config(path, cfg)
    print(f"Wrote default config to {path}")


def cmd_config_show(config: dict[str, Any]) -> None:
    """Print merged config as YAML."""
    import yaml
    print(yaml.safe_dump(config, default_flow_style=False, allow_unicode=True, sort_keys=False))


def cmd_config_validate(config: dict[str, Any]) -> None:
    errs = validate_config(config)
    if not errs:
        print("Config is valid.")
        return
    for e in errs:
        print(f"Error: {e}", file=sys.stderr)
    sys.exit(1)


def cmd_config_set(config_path: str | None, key: str, value: str, output_path: str | None) -> None:
    """Set a config key (dot notation) and save."""
    path = find_config_path(config_path)
    if path is None:
        print("Error: No config file found. Run 'portguard setup' first.", file=sys.stderr)
        sys.exit(1)
    config = load_config(path)
    try:
        set_config_key(config, key, value)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    out = Path(output_path or path)
    save_config(out, config)
    print(f"Set {key} = {value!r}; saved to {out}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="portguard", description="portguard - listening-port baseline and firewall monitor")
    ap.add_argument("--config", "-c", help="Config file path")
    ap.add_argument("--version", action="version", version=f"portguard {__version__}")
    sub = ap.add_subparsers(dest="command")

    sub.add_parser("run", help="Run one reconciliation (default when no command is given)")
    sub.add_parser("status", help="Show paths, record files and detected firewall")
    sub.add_parser("show", help="Print baseline, last check and last delta")
    p_reset = sub.add_parser("reset", help="Delete records so the next run re-initializes the baseline")
    p_reset.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    sub.add_parser("schedule", help="Register the crontab entry only")
    sub.add_parser("test", help="Send a test notification")

    p_setup = sub.add_parser("setup", help="Create directories and a default config file")
    p_setup.add_argument("--force", action="store_true", help="Overwrite existing config")

    p_config = sub.add_parser("config", help="config show|validate|set")
    p_config_sub = p_config.add_subparsers(dest="config_cmd", required=True)
    p_config_sub.add_parser("show", help="Show merged config (YAML)")
    p_config_sub.add_parser("validate", help="Validate config file")
    p_config_set = p_config_sub.add_parser("set", help="Set a key (e.g. notifications.admin_emails.0=admin@example.com)")
    p_config_set.add_argument("key", help="Dot-separated key")
    p_config_set.add_argument("value", help="Value (string; true/false and integers auto-parsed)")
    p_config_set.add_argument("--output", "-o", help="Write to this path instead of --config")
    return ap


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config_path = getattr(args, "config", None)
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        print(f"Error: cannot load configuration: {e}", file=sys.stderr)
        sys.exit(1)

    command = args.command or "run"
    try:
        _dispatch(args, command, config, config_path)
    except PortGuardError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)


def _dispatch(args: argparse.Namespace, command: str, config: dict[str, Any], config_path: str | None) -> None:
    if command == "run":
        sys.exit(cmd_run(config))
    elif command == "status":
        cmd_status(config, config_path)
    elif command == "show":
        cmd_show(config)
    elif command == "reset":
        cmd_reset(config, getattr(args, "yes", False))
    elif command == "schedule":
        cmd_schedule(config)
    elif command == "test":
        if not asyncio.run(cmd_test(config)):
            sys.exit(1)
    elif command == "setup":
        cmd_setup(config_path, getattr(args, "force", False))
    elif command == "config":
        if args.config_cmd == "show":
            cmd_config_show(config)
        elif args.config_cmd == "validate":
            cmd_config_validate(config)
        elif args.config_cmd == "set":
            cmd_config_set(config_path, args.key, args.value, getattr(args, "output", None))


if __name__ == "__main__":
    main()
