"""Turns health and vote recency into alert and failover decisions."""

from dataclasses import dataclass
from typing import Optional

from thw_switchkit.toolkit.monitors.health import FailureTracker


@dataclass(frozen=True)
class Decision:
    delinquency_alert: bool
    auto_failover_trigger: bool
    shell_failure_alert: bool
    rpc_failure_alert: bool
    should_failover: bool


class FailoverDecisionEngine:
    """Evaluates the four predicates independently on every tick.

    A delinquency alert needs both channels healthy, otherwise "no recent
    vote" cannot be told apart from "cannot see the votes". Auto-failover only
    needs the chain-RPC channel, which sees votes without touching the node;
    the active node's shell may well be unreachable when it fires.
    """

    def __init__(self, delinquency_threshold: float, ssh_failure_threshold: float,
                 rpc_failure_threshold: float, auto_failover_enabled: bool = False):
        self.delinquency_threshold = delinquency_threshold
        self.ssh_failure_threshold = ssh_failure_threshold
        self.rpc_failure_threshold = rpc_failure_threshold
        self.auto_failover_enabled = auto_failover_enabled

    def _vote_overdue(self, seconds_since_vote: Optional[float]) -> bool:
        return seconds_since_vote is not None and seconds_since_vote >= self.delinquency_threshold

    def delinquency_alert(self, seconds_since_vote, shell: FailureTracker, rpc: FailureTracker) -> bool:
        return shell.healthy and rpc.healthy and self._vote_overdue(seconds_since_vote)

    def auto_failover_trigger(self, seconds_since_vote, rpc: FailureTracker) -> bool:
        return rpc.healthy and self._vote_overdue(seconds_since_vote)

    def shell_failure_alert(self, shell: FailureTracker) -> bool:
        outage = shell.seconds_since_outage_start()
        return not shell.healthy and outage is not None and outage >= self.ssh_failure_threshold

    def rpc_failure_alert(self, rpc: FailureTracker) -> bool:
        outage = rpc.seconds_since_outage_start()
        return not rpc.healthy and outage is not None and outage >= self.rpc_failure_threshold

    def evaluate(self, seconds_since_vote: Optional[float], shell: FailureTracker, rpc: FailureTracker) -> Decision:
        trigger = self.auto_failover_trigger(seconds_since_vote, rpc)
        return Decision(
            delinquency_alert=self.delinquency_alert(seconds_since_vote, shell, rpc),
            auto_failover_trigger=trigger,
            shell_failure_alert=self.shell_failure_alert(shell),
            rpc_failure_alert=self.rpc_failure_alert(rpc),
            should_failover=trigger and self.auto_failover_enabled,
        )
