"""Tests for the best-effort emergency takeover."""

import logging
import threading
import time
from unittest.mock import MagicMock

import pytest

from thw_switchkit.toolkit.core.alerts import EmergencyTakeoverEvent
from thw_switchkit.toolkit.core.concurrency import PairLockRegistry
from thw_switchkit.toolkit.core.emergency import EmergencyFailoverCoordinator
from thw_switchkit.toolkit.core.errors import CommandFailed
from thw_switchkit.toolkit.core.models import StepStatus, tower_path
from thw_switchkit.toolkit.core.orchestrator import SwitchOrchestrator

from conftest import IDENTITY, LEDGER, UNFUNDED, TickingClock, make_state

TOWER = tower_path(LEDGER, IDENTITY)


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def locks():
    return PairLockRegistry()


@pytest.fixture
def coordinator(executor, inspector, dispatcher, locks):
    return EmergencyFailoverCoordinator(executor, inspector, dispatcher, step_timeout=2.0,
                                        locks=locks, clock=TickingClock())


@pytest.fixture
def states(node_a, node_b):
    return make_state(node_a, IDENTITY), make_state(node_b, UNFUNDED)


class TestTakeover:

    def test_dead_active_node_still_promotes_standby(self, executor, coordinator, dispatcher, pair, states):
        executor.unreachable.add("10.0.0.1")
        executor.on("10.0.0.2", "set-identity", "")

        result = coordinator.trigger(pair, *states)

        assert result.success
        assert not result.primary_switch_success
        assert not result.tower_copy_success
        assert result.standby_switch_success
        assert result.error is None
        assert result.total_duration > 0
        promote = [c for c in executor.commands("10.0.0.2") if "set-identity" in c]
        assert len(promote) == 1 and "--require-tower" in promote[0]

        event = dispatcher.send.call_args[0][0]
        assert isinstance(event, EmergencyTakeoverEvent)
        assert event.standby_switch_success and not event.primary_switch_success

    def test_all_steps_succeed(self, executor, coordinator, pair, states):
        executor.add_file("10.0.0.1", TOWER, b"tower")
        executor.on("10.0.0.1", "set-identity", "")
        executor.on("10.0.0.2", "set-identity", "")

        result = coordinator.trigger(pair, *states)

        assert result.primary_switch_success and result.tower_copy_success and result.standby_switch_success
        assert executor.files[("10.0.0.2", TOWER)] == b"tower"

    def test_promote_failure_reports_error(self, executor, coordinator, dispatcher, pair, states):
        executor.unreachable.add("10.0.0.1")
        executor.on("10.0.0.2", "set-identity", CommandFailed("tower not found"))

        result = coordinator.trigger(pair, *states)

        assert not result.success
        assert "Failed to activate standby" in result.error
        assert dispatcher.send.call_args[0][0].error == result.error

    def test_hung_step_times_out(self, executor, inspector, dispatcher, pair, states, monkeypatch, caplog):
        release = threading.Event()
        finished = threading.Event()

        def hang(*args, **kwargs):
            release.wait(5)
            finished.set()
            return ""

        executor.on("10.0.0.1", "set-identity", "")
        executor.on("10.0.0.2", "set-identity", "")
        executor.add_file("10.0.0.1", TOWER, b"tower")
        original_run_args = executor.run_args

        def run_args(session, program, args):
            if session.host == "10.0.0.1" and "set-identity" in args:
                return hang()
            return original_run_args(session, program, args)
        executor.run_args = run_args

        sessions = []
        original_new_session = SwitchOrchestrator.new_session

        def capture_session(self, *args, **kwargs):
            sessions.append(original_new_session(self, *args, **kwargs))
            return sessions[-1]
        monkeypatch.setattr(SwitchOrchestrator, "new_session", capture_session)

        coordinator = EmergencyFailoverCoordinator(executor, inspector, dispatcher, step_timeout=0.05,
                                                   locks=PairLockRegistry())
        with caplog.at_level(logging.WARNING, logger="thw_switchkit.toolkit.core.emergency"):
            try:
                result = coordinator.trigger(pair, *states)
            finally:
                release.set()
            assert finished.wait(5)
            deadline = time.monotonic() + 5
            while "finished after its" not in caplog.text and time.monotonic() < deadline:
                time.sleep(0.01)

        assert not result.primary_switch_success
        assert result.tower_copy_success
        assert result.success
        assert "Emergency demote_active finished after its 0.05s deadline" in caplog.text

        session = sessions[0]
        assert session.step_statuses["demote_active"] == StepStatus.FAILED
        assert session.failed_step == "demote_active"
        assert session.step_statuses["transfer_tower"] == StepStatus.SUCCEEDED
        assert session.step_statuses["promote_standby"] == StepStatus.SUCCEEDED
        assert session.tower_bytes == len(b"tower")


class TestSingleFlight:

    def test_trigger_ignored_while_switch_running(self, executor, coordinator, dispatcher, locks, pair, states):
        assert locks.try_acquire(pair.key)
        try:
            assert coordinator.trigger(pair, *states) is None
        finally:
            locks.release(pair.key)
        assert executor.calls == []
        dispatcher.send.assert_not_called()

    def test_lock_released_after_takeover(self, executor, coordinator, locks, pair, states):
        executor.unreachable.add("10.0.0.1")
        executor.on("10.0.0.2", "set-identity", "")
        coordinator.trigger(pair, *states)
        assert not locks.is_busy(pair.key)
