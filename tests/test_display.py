"""Tests for the rich output of the switch and monitor commands."""

from rich.console import Console

from thw_switchkit.toolkit.core.models import Role, StepStatus, SwitchOutcome, SwitchSession
from thw_switchkit.toolkit.display.switch_display import STATUS_LABELS, SwitchDisplay, format_duration
from thw_switchkit.toolkit.monitors.pair_monitor import MonitorSnapshot, NodeView

from conftest import IDENTITY, UNFUNDED, make_state


def recording_display():
    return SwitchDisplay(Console(record=True, width=400, color_system=None))


class TestSwitchDisplay:

    def test_format_duration(self):
        assert format_duration(None) == "-"
        assert format_duration(0.25) == "0.250s (250 ms)"

    def test_every_step_status_has_a_label(self):
        assert set(STATUS_LABELS) == set(StepStatus)
        assert {status.value for status in StepStatus} == {"pending", "succeeded", "failed", "previewed"}

    def test_plan_lists_commands(self, node_a, node_b):
        display = recording_display()
        display.show_plan(make_state(node_a, IDENTITY), make_state(node_b, UNFUNDED), dry_run=True)
        text = display.console.export_text()
        assert "set-identity /home/solana/keys/unfunded.json" in text
        assert "--require-tower" in text
        assert f"tower-1_9-{IDENTITY}.bin" in text
        assert "Dry run" in text

    def test_summary_shows_statuses_and_outcome(self, node_a, node_b):
        session = SwitchSession(active=make_state(node_a, IDENTITY), standby=make_state(node_b, UNFUNDED))
        session.step_statuses["demote_active"] = StepStatus.SUCCEEDED
        session.step_statuses["transfer_tower"] = StepStatus.FAILED
        session.step_durations["demote_active"] = 0.12
        session.outcome = SwitchOutcome.ABORTED
        session.total_duration = 0.5

        display = recording_display()
        display.show_summary(session)
        text = display.console.export_text()

        assert "Success" in text
        assert "Failed" in text
        assert "Outcome: ABORTED" in text

    def test_monitor_status_line(self):
        snapshot = MonitorSnapshot(
            pair_index=0, identity_pubkey=IDENTITY, taken_at=0.0,
            nodes=(NodeView("node-a", Role.ACTIVE, "agave", "2.2.14", True, None),
                   NodeView("node-b", Role.UNKNOWN, "unknown", None, False, "Connection timed out")),
            active_label="node-a", last_vote_slot=1234, is_voting=False,
            seconds_since_vote=42.0, decision=None,
        )
        display = recording_display()
        display.show_monitor_status(snapshot)
        text = display.console.export_text()
        assert "active=node-a" in text
        assert "NOT VOTING slot=1234" in text
        assert "42s ago" in text
        assert "node-b:unknown" in text
