# portguard - Configuration loader
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

SYSTEM_CONFIG_PATH = Path("/etc/portguard/config.yaml")
USER_CONFIG_PATH = Path.home() / ".config" / "portguard" / "config.yaml"


def find_config_path(path: str | Path | None = None) -> Path | None:
    """First existing config file among --config, $PORTGUARD_CONFIG, /etc, ~/.config."""
    path = path or os.environ.get("PORTGUARD_CONFIG")
    if path:
        p = Path(path).expanduser()
        return p if p.exists() else None
    for candidate in (SYSTEM_CONFIG_PATH, USER_CONFIG_PATH):
        if candidate.exists():
            return candidate
    return None


def get_default_config_path() -> Path:
    return SYSTEM_CONFIG_PATH if os.geteuid() == 0 else USER_CONFIG_PATH


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    found = find_config_path(path)
    if found is None:
        return _default_config()
    with open(found) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"{found}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{found}: top level of config must be a mapping")
    return _deep_merge(_default_config(), data)


def _default_config() -> dict[str, Any]:
    return {
        "agent": {
            "name": "portguard",
            "state_dir": "/var/lib/portguard",
            "log_dir": "/var/log/portguard",
            "require_root": True,
            "command_timeout_sec": 60,
        },
        "observer": {
            "source": "auto",  # auto | psutil | ss | netstat
        },
        "firewall": {
            "backend": "auto",  # auto | firewalld | ufw | iptables | none
        },
        "schedule": {
            "enabled": True,
            "comment": "# FIREWALL PORTS CONF CHECK",
            "cron": "0 1 * * *",
            "command": "",
        },
        "notifications": {
            "provider": "auto",  # auto | smtp | resend | msmtp | mail | none
            "admin_emails": [],
            "msmtp_account": "default",
            "smtp": {
                "host": "",
                "port": 587,
                "use_tls": False,
                "start_tls": True,
                "user": "",
                "password": "",
                "from": "portguard <noreply@localhost>",
            },
            "resend": {"api_key": "", "from": ""},
        },
        "delta": {"width": 40},
        "activity": {
            "enabled": True,
            "file": "",
        },
    }


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def get_default_config() -> dict[str, Any]:
    """Return the default configuration dict (no file merge)."""
    return _default_config()


def save_config(path: str | Path, data: dict[str, Any]) -> None:
    """Write config dict to YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


def set_config_key(data: dict[str, Any], key: str, value: Any) -> None:
    """Set a nested key using dot notation (e.g. 'notifications.smtp.port' or 'notifications.admin_emails.0')."""
    parts = key.split(".")
    cur: Any = data
    for i, p in enumerate(parts[:-1]):
        nxt = parts[i + 1]
        if isinstance(cur, list):
            if not p.isdigit():
                raise ValueError(f"Cannot set {key}: '{p}' is not a list index")
            idx = int(p)
            while len(cur) <= idx:
                cur.append({})
            cur = cur[idx]
            continue
        if nxt.isdigit():
            if not isinstance(cur.get(p), list):
                cur[p] = list(cur[p]) if cur.get(p) else []
            cur = cur[p]
        else:
            if p not in cur:
                cur[p] = {}
            cur = cur[p]
            if not isinstance(cur, dict):
                raise ValueError(f"Cannot set {key}: '{p}' is not a dict")
    last = parts[-1]
    if isinstance(value, str) and value.lower() in ("true", "false"):
        value = value.lower() == "true"
    elif isinstance(value, str) and value.isdigit():
        value = int(value)
    if last.isdigit():
        if not isinstance(cur, list):
            raise ValueError(f"Cannot set {key}: parent is not a list")
        idx = int(last)
        while len(cur) <= idx:
            cur.append(None)
        cur[idx] = value
    else:
        if not isinstance(cur, dict):
            raise ValueError(f"Cannot set {key}: parent is not a dict")
        cur[last] = value


def validate_config(config: dict[str, Any]) -> list[str]:
    """Validate config; return list of error messages (empty if valid)."""
    errs: list[str] = []
    agent = config.get("agent") or {}
    if not agent.get("state_dir"):
        errs.append("agent.state_dir is required")
    timeout = agent.get("command_timeout_sec", 60)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        errs.append("agent.command_timeout_sec must be a positive number")
    if config.get("observer", {}).get("source", "auto") not in ("auto", "psutil", "ss", "netstat"):
        errs.append("observer.source must be auto, psutil, ss or netstat")
    if config.get("firewall", {}).get("backend", "auto") not in ("auto", "firewalld", "ufw", "iptables", "none"):
        errs.append("firewall.backend must be auto, firewalld, ufw, iptables or none")
    cron = str(config.get("schedule", {}).get("cron", "0 1 * * *")).split()
    if len(cron) != 5 and not (len(cron) == 1 and cron[0].startswith("@")):
        errs.append("schedule.cron must have five fields (or be an @keyword)")
    notifications = config.get("notifications", {})
    if notifications.get("provider", "auto") not in ("auto", "smtp", "resend", "msmtp", "mail", "none"):
        errs.append("notifications.provider must be auto, smtp, resend, msmtp, mail or none")
    if notifications.get("admin_emails") and not isinstance(notifications["admin_emails"], list):
        errs.append("notifications.admin_emails must be a list")
    if notifications.get("provider") == "smtp" and not notifications.get("smtp", {}).get("host"):
        errs.append("notifications.provider is smtp but notifications.smtp.host is empty")
    if notifications.get("provider") == "resend" and not notifications.get("resend", {}).get("api_key"):
        errs.append("notifications.provider is resend but notifications.resend.api_key is empty")
    width = config.get("delta", {}).get("width", 40)
    if isinstance(width, bool) or not isinstance(width, int) or width < 15:
        errs.append("delta.width must be an integer >= 15")
    return errs
