"""Monitoring loop: one thread per validator pair plus a supervisor that collects their snapshots."""

import logging
import queue
import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from thw_switchkit.toolkit.core.alerts import (
    DelinquencyEvent,
    RpcFailureEvent,
    ShellFailureEvent,
)
from thw_switchkit.toolkit.core.emergency import EmergencyTakeoverResult
from thw_switchkit.toolkit.core.errors import ChainRpcError
from thw_switchkit.toolkit.core.models import NodeRuntimeState, Role, ValidatorPairConfig
from thw_switchkit.toolkit.monitors.alert_gate import AlertGate, AlertKind
from thw_switchkit.toolkit.monitors.decision import Decision, FailoverDecisionEngine
from thw_switchkit.toolkit.monitors.health import HealthTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeView:
    label: str
    role: Role
    flavor: str
    version: Optional[str]
    healthy: bool
    error: Optional[str]

    @classmethod
    def from_state(cls, state: NodeRuntimeState) -> "NodeView":
        return cls(
            label=state.endpoint.label,
            role=state.role,
            flavor=state.flavor.value,
            version=state.version,
            healthy=state.healthy,
            error=state.shell_error or state.rpc_error,
        )


@dataclass(frozen=True)
class MonitorSnapshot:
    """What one tick of a PairMonitor observed."""
    pair_index: int
    identity_pubkey: str
    taken_at: float
    nodes: Tuple[NodeView, ...]
    active_label: Optional[str]
    last_vote_slot: Optional[int]
    is_voting: Optional[bool]
    seconds_since_vote: Optional[float]
    decision: Optional[Decision]
    takeover: Optional[EmergencyTakeoverResult] = None


class PairMonitor(threading.Thread):
    """Watches one validator pair until told to stop.

    The monitor owns its HealthTracker and AlertGate; nothing else mutates them.
    """

    def __init__(self, index: int, pair: ValidatorPairConfig, inspector, rpc_client,
                 engine: FailoverDecisionEngine, gate: AlertGate, dispatcher, coordinator,
                 snapshots: "queue.Queue[MonitorSnapshot]", interval: float = 5.0,
                 alerts_enabled: bool = True, clock: Callable[[], float] = time.monotonic):
        super().__init__(name=f"pair-monitor-{index}", daemon=True)
        self.index = index
        self.pair = pair
        self.inspector = inspector
        self.rpc_client = rpc_client
        self.engine = engine
        self.gate = gate
        self.dispatcher = dispatcher
        self.coordinator = coordinator
        self.snapshots = snapshots
        self.interval = interval
        self.alerts_enabled = alerts_enabled
        self.clock = clock

        self.health = HealthTracker(len(pair.nodes), clock)
        self.active_idx: Optional[int] = None
        self._stop_event = threading.Event()
        self._last_reachable: List[Optional[NodeRuntimeState]] = [None] * len(pair.nodes)
        # (newest vote slot, when it was first seen)
        self._vote_clock: Optional[Tuple[Optional[int], float]] = None

    # --- Thread control ---

    def run(self):
        logger.info(f"Monitoring {self.pair.identity_pubkey} every {self.interval}s")
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception(f"Monitor tick for {self.pair.identity_pubkey} failed")
            self._stop_event.wait(self.interval)
        logger.info(f"Stopped monitoring {self.pair.identity_pubkey}")

    def stop(self):
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # --- Vote clock ---

    def _observe_vote(self, slot: Optional[int]):
        now = self.clock()
        if self._vote_clock is None or self._vote_clock[0] != slot:
            self._vote_clock = (slot, now)
            for node_idx in range(len(self.pair.nodes)):
                self.gate.reset((AlertKind.DELINQUENCY, self.index, node_idx))

    def _restart_vote_clock(self):
        slot = self._vote_clock[0] if self._vote_clock else None
        self._vote_clock = (slot, self.clock())

    def seconds_since_vote(self) -> Optional[float]:
        if self._vote_clock is None:
            return None
        return self.clock() - self._vote_clock[1]

    # --- Tick ---

    def _refresh_votes(self):
        try:
            vote = self.rpc_client.fetch_vote_data(self.pair.rpc_url, self.pair.vote_pubkey)
        except ChainRpcError as e:
            logger.warning(f"Vote data for {self.pair.vote_pubkey} unavailable: {e}")
            for node_idx in range(len(self.pair.nodes)):
                self.health.rpc(node_idx).record_failure(str(e))
            return None

        for node_idx in range(len(self.pair.nodes)):
            self.health.rpc(node_idx).record_success()
        self._observe_vote(vote.last_vote_slot)
        return vote

    def _inspect_nodes(self) -> List[NodeRuntimeState]:
        states = []
        for node_idx, endpoint in enumerate(self.pair.nodes):
            state = self.inspector.inspect(endpoint, self.pair.identity_pubkey)
            if state.reachable:
                self.health.shell(node_idx).record_success()
                self._last_reachable[node_idx] = state
            else:
                self.health.shell(node_idx).record_failure(state.shell_error)
            states.append(state)
        return states

    def _resolve_active(self, states: List[NodeRuntimeState]) -> Optional[int]:
        roles = [state.role for state in states]
        if roles.count(Role.ACTIVE) == 1:
            self.active_idx = roles.index(Role.ACTIVE)
        elif roles.count(Role.ACTIVE) > 1:
            logger.error(f"Both nodes of {self.pair.identity_pubkey} report the funded identity")
        elif roles.count(Role.STANDBY) == 1 and roles.count(Role.UNKNOWN) == 1:
            self.active_idx = roles.index(Role.UNKNOWN)
        return self.active_idx

    def tick(self) -> MonitorSnapshot:
        vote = self._refresh_votes()
        states = self._inspect_nodes()
        active_idx = self._resolve_active(states)
        seconds = self.seconds_since_vote()

        decision = None
        takeover = None
        if active_idx is None:
            logger.warning(f"Cannot tell which node of {self.pair.identity_pubkey} is active")
        else:
            decision = self.engine.evaluate(seconds, self.health.shell(active_idx), self.health.rpc(active_idx))
        if self.alerts_enabled:
            self._emit_alerts(decision, active_idx, states, vote, seconds)
        if decision is not None:
            if decision.should_failover:
                takeover = self._failover(active_idx, states)
            elif decision.auto_failover_trigger:
                logger.warning(f"{self.pair.identity_pubkey} is not voting; auto-failover is disabled")

        snapshot = MonitorSnapshot(
            pair_index=self.index,
            identity_pubkey=self.pair.identity_pubkey,
            taken_at=time.time(),
            nodes=tuple(NodeView.from_state(state) for state in states),
            active_label=self.pair.nodes[self.active_idx].label if self.active_idx is not None else None,
            last_vote_slot=vote.last_vote_slot if vote else None,
            is_voting=vote.is_voting if vote else None,
            seconds_since_vote=seconds,
            decision=decision,
            takeover=takeover,
        )
        self.snapshots.put(snapshot)
        return snapshot

    # --- Alerts ---

    def _gated(self, condition: bool, kind: AlertKind, node_idx: int) -> bool:
        key = (kind, self.index, node_idx)
        if not condition:
            # Delinquency re-arms only on a new vote slot, see _observe_vote.
            if kind != AlertKind.DELINQUENCY:
                self.gate.reset(key)
            return False
        return self.gate.should_send(key)

    def _emit_alerts(self, decision: Optional[Decision], active_idx: Optional[int],
                     states: List[NodeRuntimeState], vote, seconds: Optional[float]):
        """Evaluate the alert predicates independently of each other.

        Without a resolved active node there is no delinquency verdict, and the
        shared RPC channel is reported under the first node.
        """
        identity = self.pair.identity_pubkey

        if decision is not None and self._gated(decision.delinquency_alert, AlertKind.DELINQUENCY, active_idx):
            active = states[active_idx]
            self.dispatcher.send(DelinquencyEvent(
                validator_identity=identity,
                node_label=active.endpoint.label,
                is_active=active.role == Role.ACTIVE,
                last_vote_slot=vote.last_vote_slot if vote else None,
                seconds_since_vote=seconds,
            ))

        for node_idx, state in enumerate(states):
            shell = self.health.shell(node_idx)
            if self._gated(self.engine.shell_failure_alert(shell), AlertKind.SHELL_FAILURE, node_idx):
                self.dispatcher.send(ShellFailureEvent(
                    validator_identity=identity,
                    node_label=state.endpoint.label,
                    host=state.endpoint.host,
                    outage_seconds=shell.seconds_since_outage_start() or 0.0,
                    consecutive_failures=shell.consecutive_failures,
                    last_error=shell.last_error,
                ))

        rpc_idx = active_idx if active_idx is not None else 0
        rpc = self.health.rpc(rpc_idx)
        if self._gated(self.engine.rpc_failure_alert(rpc), AlertKind.RPC_FAILURE, rpc_idx):
            self.dispatcher.send(RpcFailureEvent(
                validator_identity=identity,
                rpc_url=self.pair.rpc_url,
                outage_seconds=rpc.seconds_since_outage_start() or 0.0,
                consecutive_failures=rpc.consecutive_failures,
                last_error=rpc.last_error,
            ))

    # --- Failover ---

    def _best_state(self, node_idx: int, states: List[NodeRuntimeState]) -> NodeRuntimeState:
        if states[node_idx].reachable:
            return states[node_idx]
        return self._last_reachable[node_idx] or states[node_idx]

    def _failover(self, active_idx: int, states: List[NodeRuntimeState]) -> Optional[EmergencyTakeoverResult]:
        standby_idx = 1 - active_idx
        logger.critical(f"{self.pair.identity_pubkey} has not voted for {self.seconds_since_vote():.0f}s, "
                        f"starting emergency takeover")
        result = self.coordinator.trigger(self.pair, self._best_state(active_idx, states),
                                          self._best_state(standby_idx, states))
        if result is None:
            return None
        # The promoted node gets a full threshold to start voting.
        self._restart_vote_clock()
        if result.success:
            self.active_idx = standby_idx
        return result


class MonitorSupervisor:
    """Starts the pair monitors and keeps the latest snapshot of each."""

    def __init__(self, monitors: List[PairMonitor], snapshots: "queue.Queue[MonitorSnapshot]",
                 on_snapshot: Optional[Callable[[MonitorSnapshot], None]] = None):
        self.monitors = monitors
        self.snapshots = snapshots
        self.on_snapshot = on_snapshot
        self.latest: Dict[int, MonitorSnapshot] = {}
        self._latest_lock = threading.Lock()
        self._stop_event = threading.Event()

    def install_signal_handlers(self):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, sig, frame):
        logger.info(f"Received signal {sig}, stopping monitors")
        self.stop()

    def snapshot(self, pair_index: int) -> Optional[MonitorSnapshot]:
        with self._latest_lock:
            return self.latest.get(pair_index)

    def drain(self, timeout: float = 0.0) -> int:
        """Move queued snapshots into ``latest``. Waits up to ``timeout`` for the first one."""
        count = 0
        block = timeout > 0
        while True:
            try:
                snap = self.snapshots.get(block=block, timeout=timeout if block else None)
            except queue.Empty:
                return count
            block = False
            with self._latest_lock:
                self.latest[snap.pair_index] = snap
            count += 1
            if self.on_snapshot is not None:
                self.on_snapshot(snap)

    def start(self):
        for monitor in self.monitors:
            monitor.start()

    def stop(self):
        self._stop_event.set()
        for monitor in self.monitors:
            monitor.stop()

    def run(self, poll_interval: float = 1.0):
        """Run until stop() or a signal; returns after all monitors have exited."""
        self.start()
        try:
            while not self._stop_event.is_set():
                self.drain(timeout=poll_interval)
        finally:
            self.stop()
            for monitor in self.monitors:
                monitor.join(timeout=30)
            self.drain()
