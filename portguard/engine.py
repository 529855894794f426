# portguard - Reconciliation engine: baseline, delta, duplicate suppression
from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Any

from portguard.delta import side_by_side
from portguard.firewall import FirewallAdapter
from portguard.models import FirewallKind, NoPortsObservedError, PortGuardError, PortSet, RunOutcome
from portguard.scheduler import schedule_entry
from portguard.store import CHECK_TAG, SNAPSHOT_TAG, SnapshotStore, render_ports

logger = logging.getLogger("portguard.engine")

INIT_SUBJECT = "Initial Firewall Configuration Complete"
CHANGE_SUBJECT = "WARNING: Port configuration changed"


class ReconciliationEngine:
    """One observe -> compare -> act pass over the state directory.

    The first run records the observed ports as the baseline, opens them in
    the firewall and registers the cron entry. Every later run compares the
    current ports against that baseline and notifies only when the delta
    carries change markers and differs from the delta of the run before.
    The baseline is never rewritten here; accepting a new state means
    resetting the store.
    """

    def __init__(
        self,
        config: dict[str, Any],
        observer: Any,
        store: SnapshotStore,
        firewall: FirewallAdapter,
        notifier: Any,
        scheduler: Any = None,
        activity: Any = None,
    ) -> None:
        self.config = config
        self._observer = observer
        self._store = store
        self._firewall = firewall
        self._notifier = notifier
        self._scheduler = scheduler
        self._activity = activity
        self._width = config.get("delta", {}).get("width", 40)
        self._schedule_enabled = config.get("schedule", {}).get("enabled", True)

    @property
    def store(self) -> SnapshotStore:
        return self._store

    async def run(self) -> RunOutcome:
        t0 = time.perf_counter()
        ports = PortSet()
        try:
            ports = await self._observer.observe()
            if not ports:
                raise NoPortsObservedError("No listening ports found")
            logger.info("Found %d listening ports", len(ports))
            self._store.ensure_dir()
            snapshot = self._store.load_snapshot()
            if snapshot is None:
                outcome = await self._initialize(ports)
            else:
                outcome = await self._check(snapshot, ports)
        except PortGuardError as e:
            if self._activity:
                await self._activity.log_run("error", list(ports), time.perf_counter() - t0, "", str(e))
            raise
        if self._activity:
            await self._activity.log_run(outcome.value, list(ports), time.perf_counter() - t0)
        return outcome

    # --- First run ---

    async def _initialize(self, ports: PortSet) -> RunOutcome:
        logger.info("Initializing firewall configuration")
        self._store.save_snapshot(ports)
        failed = await self._apply_rules(ports)
        status = await self._firewall_status()
        await self._register_schedule()
        body = self._initial_body(ports, status, failed)
        await self._notify(INIT_SUBJECT, body)
        logger.info("Initialization complete")
        return RunOutcome.INITIALIZED

    async def _apply_rules(self, ports: PortSet) -> list[int]:
        """Submit one allow rule per port. Returns the ports left for manual action."""
        fw = self._firewall
        loop = asyncio.get_event_loop()
        if not fw.managed:
            if fw.kind is FirewallKind.NONE:
                logger.warning("No firewall system detected")
            for port in ports:
                logger.warning("Firewall %s not managed automatically: allow %d/tcp manually", fw.name, port)
                if self._activity:
                    await self._activity.log_rule(fw.name, port, False, "unmanaged")
            return list(ports)
        logger.info("Configuring %s rules for %d ports", fw.name, len(ports))
        failed: list[int] = []
        for port in ports:
            logger.info("Adding %s rule: allow %d/tcp", fw.name, port)
            result = await loop.run_in_executor(None, fw.add_allow_rule, port)
            if not result.ok:
                logger.warning("Failed to add %s rule for port %d: %s", fw.name, port, result.reason)
                failed.append(port)
            if self._activity:
                await self._activity.log_rule(fw.name, port, result.ok, result.reason)
        if fw.needs_reload:
            result = await loop.run_in_executor(None, fw.reload)
            if not result.ok:
                logger.warning("Failed to reload %s: %s", fw.name, result.reason)
        return failed

    async def _firewall_status(self) -> str:
        fw = self._firewall
        if fw.kind is FirewallKind.NONE:
            return f"Firewall status not available for {fw.name}"
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(None, fw.list_rules)
        if not result.ok:
            logger.warning("Failed to get %s status: %s", fw.name, result.reason)
            return f"{fw.name} status unavailable"
        return result.output.strip() or "(no rules listed)"

    async def _register_schedule(self) -> None:
        if not self._scheduler or not self._schedule_enabled:
            return
        comment, line = schedule_entry(self.config)
        try:
            added = await self._scheduler.ensure_scheduled_async(comment, line)
        except PortGuardError as e:
            logger.warning("Could not register schedule entry: %s", e)
            if self._activity:
                await self._activity.log_schedule(line, False, str(e))
            return
        if self._activity:
            await self._activity.log_schedule(line, added)

    def _initial_body(self, ports: PortSet, status: str, failed: list[int]) -> str:
        host = getattr(self._notifier, "hostname", "") or "this host"
        fw = self._firewall.name
        lines = [
            f"Initial firewall port configuration has been set up on {host}.",
            "",
            "DETECTED LISTENING PORTS:",
            render_ports(SNAPSHOT_TAG, ports).rstrip("\n"),
            "",
            f"FIREWALL RULES CONFIGURED ({fw}):",
            status,
            "",
            f"Total ports configured: {len(ports) - len(failed)} of {len(ports)}",
        ]
        if failed:
            lines += [
                "",
                "MANUAL ACTION REQUIRED for ports: " + ", ".join(str(p) for p in failed),
                "These ports are not retried automatically; fix them by hand or run 'portguard reset'.",
            ]
        lines += [
            "",
            "This is an automated notification from the firewall port monitoring system.",
            "The system will now monitor for port changes and notify you of any modifications.",
            "",
            f"Script location: {sys.argv[0] if sys.argv else 'portguard'}",
            f"Configuration path: {self._store.state_dir}",
        ]
        return "\n".join(lines)

    # --- Steady state ---

    async def _check(self, snapshot: PortSet, ports: PortSet) -> RunOutcome:
        self._store.save_check_result(ports)
        self._store.rotate_delta_to_prior()
        logger.info("Comparing port configurations")
        delta = side_by_side(snapshot.lines(), ports.lines(), self._width, header=(SNAPSHOT_TAG, CHECK_TAG))
        self._store.save_delta(delta.text)
        prior = self._store.load_prior_delta()

        if prior is None:
            logger.info("First run comparison, no notification sent")
            return RunOutcome.FIRST_COMPARISON
        if prior == delta.text:
            if delta.has_changes:
                logger.info("No changes since last run (already reported: %s)", delta.summary())
                return RunOutcome.CHANGE_SUPPRESSED
            logger.info("No changes since last run")
            return RunOutcome.NO_CHANGE
        if not delta.has_changes:
            logger.info("No significant port changes detected")
            return RunOutcome.NO_CHANGE
        logger.info("Port changes detected (%s), sending notification", delta.summary())
        await self._notify(CHANGE_SUBJECT, delta.text)
        return RunOutcome.CHANGE_NOTIFIED

    async def _notify(self, subject: str, body: str) -> bool:
        try:
            delivered = await self._notifier.send(subject, body)
        except Exception as e:
            logger.warning("Notification failed: %s", e)
            delivered = False
        if not delivered:
            logger.warning("Notification '%s' was not delivered", subject)
        if self._activity:
            await self._activity.log_notification(subject, bool(delivered), getattr(self._notifier, "provider", ""))
        return bool(delivered)


def build_engine(config: dict[str, Any], activity: Any = None) -> ReconciliationEngine:
    """Wire the production collaborators from config."""
    from portguard.collector.ports import PortObserver
    from portguard.firewall import get_firewall
    from portguard.reporter.email_reporter import EmailReporter
    from portguard.scheduler import CronScheduler

    return ReconciliationEngine(
        config,
        observer=PortObserver(config),
        store=SnapshotStore(config),
        firewall=get_firewall(config),
        notifier=EmailReporter(config.get("notifications", {})),
        scheduler=CronScheduler(config),
        activity=activity,
    )
