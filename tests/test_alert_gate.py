"""Tests for alert cooldown suppression."""

from thw_switchkit.toolkit.monitors.alert_gate import AlertGate, AlertKind

from conftest import ManualClock

DELINQUENT = (AlertKind.DELINQUENCY, 0, 0)


class TestAlertGate:

    def setup_method(self):
        self.clock = ManualClock(0.0)
        self.gate = AlertGate({AlertKind.DELINQUENCY: 900, AlertKind.SHELL_FAILURE: 1800}, clock=self.clock)

    def test_first_alert_passes(self):
        assert self.gate.should_send(DELINQUENT)
        assert self.gate.last_fired(DELINQUENT) == 0.0

    def test_suppressed_within_window(self):
        self.gate.should_send(DELINQUENT)
        self.clock.advance(899)
        assert not self.gate.should_send(DELINQUENT)

    def test_sent_again_after_window(self):
        self.gate.should_send(DELINQUENT)
        self.clock.advance(900)
        assert self.gate.should_send(DELINQUENT)
        assert self.gate.last_fired(DELINQUENT) == 900.0

    def test_suppression_does_not_extend_window(self):
        self.gate.should_send(DELINQUENT)
        self.clock.advance(500)
        self.gate.should_send(DELINQUENT)
        self.clock.advance(400)
        assert self.gate.should_send(DELINQUENT)

    def test_keys_are_independent(self):
        assert self.gate.should_send(DELINQUENT)
        assert self.gate.should_send((AlertKind.DELINQUENCY, 1, 0))
        assert self.gate.should_send((AlertKind.SHELL_FAILURE, 0, 0))
        assert self.gate.should_send((AlertKind.SHELL_FAILURE, 0, 1))

    def test_reset_reopens_gate(self):
        self.gate.should_send(DELINQUENT)
        self.gate.reset(DELINQUENT)
        assert self.gate.should_send(DELINQUENT)

    def test_window_per_kind(self):
        assert self.gate.window(AlertKind.DELINQUENCY) == 900
        assert self.gate.window(AlertKind.SHELL_FAILURE) == 1800
        assert self.gate.window(AlertKind.RPC_FAILURE) == 300.0
