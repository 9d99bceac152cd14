"""Rich rendering of switch plans, switch summaries and monitor status."""

from typing import Any, Optional, Tuple

from rich.console import Console, Group
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from thw_switchkit.toolkit.core.flavor_probe import render_command
from thw_switchkit.toolkit.core.models import (
    Flavor, NodeRuntimeState, StepStatus, SwitchOutcome, SwitchSession, tower_path
)
from thw_switchkit.toolkit.core.orchestrator import STEP_TITLES, build_set_identity_command

from .constants import (
    STYLE_BRIGHT_CYAN, STYLE_CYAN, STYLE_GREEN, STYLE_GREEN_BOLD, STYLE_RED, STYLE_BOLD_RED,
    STYLE_DIM, STYLE_YELLOW_BOLD, STYLE_BLUE_BOLD, STYLE_ACTIVE, STYLE_STANDBY, STYLE_NOT_VOTING,
    PADDING_STANDARD, PADDING_NARROW,
    STEP_SUCCEEDED, STEP_FAILED, STEP_PREVIEWED, STEP_PENDING,
    APP_NAME, HEADER_TITLE_PLAN, HEADER_TITLE_SUMMARY
)

STATUS_LABELS = {
    StepStatus.SUCCEEDED: (STEP_SUCCEEDED, STYLE_GREEN),
    StepStatus.FAILED: (STEP_FAILED, STYLE_RED),
    StepStatus.PREVIEWED: (STEP_PREVIEWED, STYLE_CYAN),
    StepStatus.PENDING: (STEP_PENDING, STYLE_DIM),
}

OUTCOME_STYLES = {
    SwitchOutcome.DONE: STYLE_GREEN_BOLD,
    SwitchOutcome.ABORTED: STYLE_YELLOW_BOLD,
    SwitchOutcome.PARTIAL: STYLE_BOLD_RED,
}


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    return f"{seconds:.3f}s ({seconds * 1000:.0f} ms)"


def flavor_text(state: NodeRuntimeState) -> Text:
    style = STYLE_RED if state.flavor == Flavor.FIREDANCER else STYLE_GREEN
    version = f" {state.version}" if state.version else ""
    return Text(f"{state.flavor.value}{version}", style=style)


class SwitchDisplay:
    """Operator-facing output for the switch and monitor commands."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def _create_styled_panel(
        self,
        content: Any,
        title: str,
        border_style: str = STYLE_BRIGHT_CYAN,
        padding: Tuple[int, int] = PADDING_STANDARD
    ) -> Panel:
        return Panel(
            content,
            title=Text(f"{APP_NAME}: {title}", style=STYLE_GREEN_BOLD),
            title_align="left",
            border_style=border_style,
            padding=padding
        )

    def _nodes_table(self, active: NodeRuntimeState, standby: NodeRuntimeState) -> Table:
        table = Table(show_header=True, header_style=STYLE_BLUE_BOLD, expand=True)
        table.add_column("")
        table.add_column("FROM (active)")
        table.add_column("TO (standby)")
        table.add_row("Node", Text(active.endpoint.label, style=STYLE_ACTIVE),
                      Text(standby.endpoint.label, style=STYLE_STANDBY))
        table.add_row("Host", active.endpoint.address, standby.endpoint.address)
        table.add_row("Client", flavor_text(active), flavor_text(standby))
        table.add_row("Executable", active.executable or "-", standby.executable or "-")
        table.add_row("Ledger", active.ledger_path, standby.ledger_path)
        return table

    def show_plan(self, active: NodeRuntimeState, standby: NodeRuntimeState, dry_run: bool = False):
        """Print the nodes involved and the commands each step will run."""
        identity = active.identity_pubkey
        steps = Table(show_header=False, box=None, padding=PADDING_NARROW)
        steps.add_column(style=STYLE_CYAN)
        steps.add_column()
        demote = render_command(build_set_identity_command(active, active.endpoint.unfunded_identity))
        promote = render_command(build_set_identity_command(standby, standby.endpoint.funded_identity,
                                                            require_tower=True))
        steps.add_row(f"(1) {STEP_TITLES['demote_active']}", Text(f"[{active.endpoint.label}] {demote}"))
        steps.add_row(f"(2) {STEP_TITLES['transfer_tower']}",
                      Text(f"{active.tower_path} -> {standby.endpoint.label}:{tower_path(standby.ledger_path, identity)}"))
        steps.add_row(f"(3) {STEP_TITLES['promote_standby']}", Text(f"[{standby.endpoint.label}] {promote}"))
        steps.add_row(f"(4) {STEP_TITLES['verify_new_active']}", Text(f"[{standby.endpoint.label}] getIdentity / getHealth"))

        parts = [self._nodes_table(active, standby), Text(""), steps]
        if dry_run:
            parts.append(Text("\nDry run: only the tower transfer (2) is executed, to measure its latency.",
                              style=STYLE_YELLOW_BOLD))
        self.console.print(self._create_styled_panel(Group(*parts), f"{HEADER_TITLE_PLAN} ({identity})"))

    def confirm(self, prompt: str = "Proceed with this switch?") -> bool:
        return Confirm.ask(Text(prompt, style=STYLE_GREEN_BOLD), console=self.console, default=False)

    def show_summary(self, session: SwitchSession):
        """Print per-step status and timing for a finished (or failed) switch."""
        table = Table(show_header=True, header_style=STYLE_BLUE_BOLD, expand=True)
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Duration", justify="right")
        for number, (step, title) in enumerate(STEP_TITLES.items(), start=1):
            label, style = STATUS_LABELS[session.step_statuses[step]]
            table.add_row(f"({number}) {title}", Text(label, style=style),
                          format_duration(session.step_durations.get(step)))

        lines = [table]
        if session.tower_bytes:
            throughput = session.transfer_throughput
            rate = f" at {throughput / 1024 / 1024:.2f} MB/s" if throughput else ""
            lines.append(Text(f"Tower {session.tower_filename}: {session.tower_bytes} bytes{rate}"))
        lines.append(Text(f"Total: {format_duration(session.total_duration)}"))
        for warning in session.warnings:
            lines.append(Text(f"Warning: {warning}", style=STYLE_YELLOW_BOLD))
        if session.outcome is not None:
            lines.append(Text(f"Outcome: {session.outcome.value.upper()}",
                              style=OUTCOME_STYLES[session.outcome]))

        border = STYLE_BRIGHT_CYAN if session.outcome == SwitchOutcome.DONE else STYLE_RED
        title = HEADER_TITLE_SUMMARY + (" (dry run)" if session.dry_run else "")
        self.console.print(self._create_styled_panel(Group(*lines), title, border_style=border))

    def show_monitor_status(self, snapshot):
        """One status line per monitor tick."""
        line = Text(f"[{snapshot.identity_pubkey[:8]}] ", style=STYLE_DIM)
        line.append(f"active={snapshot.active_label or '?'} ", style=STYLE_CYAN)
        if snapshot.is_voting is None:
            line.append("votes=unknown ", style=STYLE_YELLOW_BOLD)
        elif snapshot.is_voting:
            line.append(f"voting slot={snapshot.last_vote_slot} ", style=STYLE_GREEN)
        else:
            line.append(f"NOT VOTING slot={snapshot.last_vote_slot} ", style=STYLE_NOT_VOTING)
        if snapshot.seconds_since_vote is not None:
            line.append(f"last change {snapshot.seconds_since_vote:.0f}s ago ")
        for node in snapshot.nodes:
            style = STYLE_RED if node.error else STYLE_DIM
            line.append(f"| {node.label}:{node.role.value} ", style=style)
        if snapshot.takeover is not None:
            outcome = "succeeded" if snapshot.takeover.success else "FAILED"
            line.append(f"| emergency takeover {outcome}", style=STYLE_NOT_VOTING)
        self.console.print(line)
