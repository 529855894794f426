# portguard - Reconciliation engine tests
import asyncio
import json

import pytest

from conftest import FakeFirewall, FakeNotifier, FakeObserver, FakeScheduler
from portguard.engine import CHANGE_SUBJECT, INIT_SUBJECT, ReconciliationEngine
from portguard.firewall import IptablesAdapter, UnmanagedAdapter
from portguard.models import NoPortsObservedError, RunOutcome
from portguard.reporter.activity import ActivityLogger
from portguard.store import SnapshotStore


def _engine(config, observer, firewall=None, notifier=None, scheduler=None, activity=None):
    return ReconciliationEngine(
        config,
        observer=observer,
        store=SnapshotStore(config),
        firewall=firewall or FakeFirewall(),
        notifier=notifier or FakeNotifier(),
        scheduler=scheduler if scheduler is not None else FakeScheduler(),
        activity=activity,
    )


def _run(engine):
    return asyncio.run(engine.run())


def test_first_run_initializes(config):
    fw, notifier, sched = FakeFirewall(), FakeNotifier(), FakeScheduler()
    engine = _engine(config, FakeObserver([443, 22, 80, 22]), fw, notifier, sched)
    assert _run(engine) == RunOutcome.INITIALIZED

    store = engine.store
    assert store.snapshot_path.read_text() == "FIREWALL PORTS\n22\n80\n443\n"
    assert fw.rules == [22, 80, 443]
    assert sched.entries == ["# FIREWALL PORTS CONF CHECK", "0 1 * * * /usr/local/bin/portguard run"]
    assert len(notifier.sent) == 1
    subject, body = notifier.sent[0]
    assert subject == INIT_SUBJECT
    assert "FIREWALL PORTS\n22\n80\n443" in body
    assert "ALLOW 80/tcp" in body
    assert "Total ports configured: 3 of 3" in body
    # no delta work on an initialization run
    assert not store.check_path.exists()
    assert not store.delta_path.exists()


def test_empty_observation_is_fatal(config):
    notifier = FakeNotifier()
    engine = _engine(config, FakeObserver([]), notifier=notifier)
    with pytest.raises(NoPortsObservedError):
        _run(engine)
    assert notifier.sent == []
    assert not engine.store.snapshot_path.exists()


def test_second_run_sees_existing_baseline(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    assert _run(engine) == RunOutcome.INITIALIZED
    baseline = engine.store.snapshot_path.read_text()

    again = _engine(config, observer, notifier=notifier)
    assert _run(again) == RunOutcome.FIRST_COMPARISON
    assert again.store.snapshot_path.read_text() == baseline
    assert len(notifier.sent) == 1


def test_unchanged_ports_never_notify(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    outcomes = [_run(engine) for _ in range(6)]
    assert outcomes[0] == RunOutcome.INITIALIZED
    assert outcomes[1] == RunOutcome.FIRST_COMPARISON
    assert all(o == RunOutcome.NO_CHANGE for o in outcomes[2:])
    assert [s for s, _ in notifier.sent] == [INIT_SUBJECT]


def test_change_notifies_once_then_suppressed(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    _run(engine)  # init
    _run(engine)  # first comparison, empty delta

    observer.set([22, 80, 8080])
    assert _run(engine) == RunOutcome.CHANGE_NOTIFIED
    subject, body = notifier.sent[-1]
    assert subject == CHANGE_SUBJECT
    assert "> 8080" in body
    assert body == engine.store.load_delta()

    assert _run(engine) == RunOutcome.CHANGE_SUPPRESSED
    assert _run(engine) == RunOutcome.CHANGE_SUPPRESSED
    assert [s for s, _ in notifier.sent].count(CHANGE_SUBJECT) == 1


def test_revert_does_not_notify(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    _run(engine)
    _run(engine)
    observer.set([22, 80, 8080])
    _run(engine)
    observer.set([22, 80])
    assert _run(engine) == RunOutcome.NO_CHANGE
    assert [s for s, _ in notifier.sent].count(CHANGE_SUBJECT) == 1
    assert "<" not in engine.store.load_delta() and ">" not in engine.store.load_delta()


def test_change_on_first_comparison_is_not_notified(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    _run(engine)
    observer.set([22])
    assert _run(engine) == RunOutcome.FIRST_COMPARISON
    # the same change on the next run is a repeat of the stored delta
    assert _run(engine) == RunOutcome.CHANGE_SUPPRESSED
    assert len(notifier.sent) == 1


def test_different_change_notifies_again(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier()
    engine = _engine(config, observer, notifier=notifier)
    _run(engine)
    _run(engine)
    observer.set([22, 80, 8080])
    _run(engine)
    observer.set([22, 80, 8080, 9090])
    assert _run(engine) == RunOutcome.CHANGE_NOTIFIED
    assert [s for s, _ in notifier.sent].count(CHANGE_SUBJECT) == 2


def test_baseline_never_rewritten_on_steady_state(config):
    observer = FakeObserver([22, 80])
    engine = _engine(config, observer)
    _run(engine)
    observer.set([443])
    _run(engine)
    _run(engine)
    assert engine.store.load_snapshot().ports == (22, 80)
    assert engine.store.load_check_result().ports == (443,)


def test_only_one_generation_of_prior_delta(config):
    observer = FakeObserver([22, 80])
    engine = _engine(config, observer)
    _run(engine)
    observer.set([22])
    _run(engine)
    first_delta = engine.store.load_delta()
    observer.set([80])
    _run(engine)
    assert engine.store.load_prior_delta() == first_delta
    observer.set([22, 80])
    _run(engine)
    assert engine.store.load_prior_delta() != first_delta


def test_rule_failures_do_not_abort_initialization(config):
    fw = FakeFirewall(fail_ports=(80,))
    notifier = FakeNotifier()
    engine = _engine(config, FakeObserver([22, 80, 443]), fw, notifier)
    assert _run(engine) == RunOutcome.INITIALIZED
    assert fw.attempts == [22, 80, 443]
    assert fw.rules == [22, 443]
    body = notifier.sent[0][1]
    assert "MANUAL ACTION REQUIRED for ports: 80" in body
    assert "Total ports configured: 2 of 3" in body


def test_unmanaged_firewall_warns_per_port(config, caplog):
    notifier = FakeNotifier()
    engine = _engine(config, FakeObserver([22, 80]), UnmanagedAdapter(), notifier)
    with caplog.at_level("WARNING", logger="portguard.engine"):
        assert _run(engine) == RunOutcome.INITIALIZED
    warnings = [r.getMessage() for r in caplog.records if "manually" in r.getMessage()]
    assert len(warnings) == 2
    assert "Firewall status not available for none" in notifier.sent[0][1]


def test_iptables_status_failure_is_degraded(config):
    from conftest import FakeRunner
    from portguard.models import CommandResult

    runner = FakeRunner({("iptables",): CommandResult(["iptables"], 4, "", "Permission denied")})
    notifier = FakeNotifier()
    engine = _engine(config, FakeObserver([22]), IptablesAdapter(runner), notifier)
    assert _run(engine) == RunOutcome.INITIALIZED
    assert "iptables status unavailable" in notifier.sent[0][1]


def test_notification_failure_is_not_fatal(config):
    observer = FakeObserver([22, 80])
    notifier = FakeNotifier(delivered=False)
    engine = _engine(config, observer, notifier=notifier)
    assert _run(engine) == RunOutcome.INITIALIZED
    _run(engine)
    observer.set([22])
    assert _run(engine) == RunOutcome.CHANGE_NOTIFIED
    assert len(notifier.sent) == 2


def test_schedule_disabled(config):
    config["schedule"]["enabled"] = False
    sched = FakeScheduler()
    engine = _engine(config, FakeObserver([22]), scheduler=sched)
    _run(engine)
    assert sched.entries == []


def test_activity_log_records_run(config, tmp_path):
    activity = ActivityLogger(config)
    observer = FakeObserver([22, 80])

    async def go():
        await activity.start()
        try:
            engine = _engine(config, observer, activity=activity)
            await engine.run()
            await engine.run()
        finally:
            await activity.stop()

    asyncio.run(go())
    records = [json.loads(l) for l in activity.path.read_text().splitlines()]
    runs = [r for r in records if r["type"] == "run"]
    assert [r["outcome"] for r in runs] == ["initialized", "first_comparison"]
    assert runs[0]["ports"] == [22, 80]
    assert sum(1 for r in records if r["type"] == "firewall_rule") == 2
    assert any(r["type"] == "schedule" and r["added"] for r in records)


def test_first_run_registers_cron_without_prior_crontab(config):
    from conftest import FakeRunner
    from portguard.models import CommandResult
    from portguard.scheduler import CronScheduler

    runner = FakeRunner({
        ("crontab", "-l"): CommandResult(["crontab", "-l"], 1, "", "crontab: can't open 'root': No such file or directory\n"),
    })
    engine = _engine(config, FakeObserver([22]), scheduler=CronScheduler(config, runner))
    assert _run(engine) == RunOutcome.INITIALIZED
    assert ["crontab", "-"] in runner.calls
    installed = runner.inputs[runner.calls.index(["crontab", "-"])]
    assert installed == "# FIREWALL PORTS CONF CHECK\n0 1 * * * /usr/local/bin/portguard run\n"
