"""Tests for the alert and auto-failover predicates."""

import pytest

from thw_switchkit.toolkit.monitors.decision import FailoverDecisionEngine
from thw_switchkit.toolkit.monitors.health import FailureTracker

from conftest import ManualClock


@pytest.fixture
def clock():
    return ManualClock(0.0)


@pytest.fixture
def engine():
    return FailoverDecisionEngine(delinquency_threshold=30, ssh_failure_threshold=1800,
                                  rpc_failure_threshold=1800, auto_failover_enabled=True)


def trackers(clock, shell_failures=0, rpc_failures=0):
    shell, rpc = FailureTracker(clock), FailureTracker(clock)
    for _ in range(shell_failures):
        shell.record_failure("ssh down")
    for _ in range(rpc_failures):
        rpc.record_failure("rpc down")
    return shell, rpc


class TestPredicates:

    def test_both_channels_healthy_and_overdue(self, engine, clock):
        decision = engine.evaluate(40, *trackers(clock))
        assert decision.delinquency_alert
        assert decision.auto_failover_trigger

    def test_shell_failing_still_triggers_failover(self, engine, clock):
        decision = engine.evaluate(40, *trackers(clock, shell_failures=1))
        assert not decision.delinquency_alert
        assert decision.auto_failover_trigger

    def test_rpc_failing_blocks_both(self, engine, clock):
        decision = engine.evaluate(40, *trackers(clock, rpc_failures=1))
        assert not decision.delinquency_alert
        assert not decision.auto_failover_trigger
        assert not decision.should_failover

    def test_recent_vote_is_quiet(self, engine, clock):
        decision = engine.evaluate(5, *trackers(clock))
        assert not decision.delinquency_alert
        assert not decision.auto_failover_trigger

    def test_no_vote_observed_yet(self, engine, clock):
        assert not engine.evaluate(None, *trackers(clock)).auto_failover_trigger

    def test_threshold_is_inclusive(self, engine, clock):
        assert engine.evaluate(30, *trackers(clock)).delinquency_alert

    @pytest.mark.parametrize("shell_failures", [0, 1, 2, 7])
    def test_shell_state_never_changes_trigger(self, engine, clock, shell_failures):
        shell, rpc = trackers(clock, shell_failures=shell_failures)
        assert engine.auto_failover_trigger(40, rpc)
        assert engine.evaluate(40, shell, rpc).auto_failover_trigger


class TestOutageAlerts:

    def test_shell_alert_after_threshold(self, engine, clock):
        shell, _ = trackers(clock, shell_failures=1)
        clock.advance(1799)
        assert not engine.shell_failure_alert(shell)
        clock.advance(1)
        assert engine.shell_failure_alert(shell)

    def test_rpc_alert_after_threshold(self, engine, clock):
        _, rpc = trackers(clock, rpc_failures=3)
        clock.advance(1800)
        assert engine.rpc_failure_alert(rpc)

    def test_healthy_channel_never_alerts(self, engine, clock):
        shell, rpc = trackers(clock)
        clock.advance(100000)
        assert not engine.shell_failure_alert(shell)
        assert not engine.rpc_failure_alert(rpc)


class TestEnabledFlag:

    def test_disabled_keeps_trigger_but_not_failover(self, clock):
        engine = FailoverDecisionEngine(30, 1800, 1800, auto_failover_enabled=False)
        decision = engine.evaluate(40, *trackers(clock))
        assert decision.auto_failover_trigger
        assert not decision.should_failover

    def test_enabled_fails_over(self, engine, clock):
        assert engine.evaluate(40, *trackers(clock)).should_failover
