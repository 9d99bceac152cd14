"""
Structured alert events and the sinks that receive them.

Delivery is fire-and-forget: events are queued and handed to sinks on a
background thread, and a sink that raises is logged and otherwise ignored so
that alerting can never fail a switch or a failover.
"""

import abc
import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertEvent:
    kind = "event"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class DelinquencyEvent(AlertEvent):
    kind = "delinquency"
    validator_identity: str
    node_label: str
    is_active: bool
    last_vote_slot: Optional[int]
    seconds_since_vote: float


@dataclass(frozen=True)
class ShellFailureEvent(AlertEvent):
    kind = "shell_failure"
    validator_identity: str
    node_label: str
    host: str
    outage_seconds: float
    consecutive_failures: int
    last_error: Optional[str]


@dataclass(frozen=True)
class RpcFailureEvent(AlertEvent):
    kind = "rpc_failure"
    validator_identity: str
    rpc_url: str
    outage_seconds: float
    consecutive_failures: int
    last_error: Optional[str]


@dataclass(frozen=True)
class SwitchResultEvent(AlertEvent):
    kind = "switch_result"
    validator_identity: str
    from_label: str
    to_label: str
    outcome: str
    dry_run: bool
    total_duration: Optional[float]
    step_statuses: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class EmergencyTakeoverEvent(AlertEvent):
    kind = "emergency_takeover"
    validator_identity: str
    active_label: str
    standby_label: str
    primary_switch_success: bool
    tower_copy_success: bool
    standby_switch_success: bool
    total_duration: float
    error: Optional[str] = None


class AlertSink(abc.ABC):
    """Receives alert events. Formatting and delivery are up to the sink."""

    @abc.abstractmethod
    def send(self, event: AlertEvent):
        """Deliver one event."""


class LoggingAlertSink(AlertSink):
    """Writes every event to the log."""

    def __init__(self, logger_name: str = "thw_switchkit.alerts"):
        self.log = logging.getLogger(logger_name)

    def send(self, event: AlertEvent):
        level = logging.WARNING
        if isinstance(event, EmergencyTakeoverEvent) and not event.standby_switch_success:
            level = logging.CRITICAL
        elif isinstance(event, DelinquencyEvent):
            level = logging.ERROR
        details = ", ".join(f"{k}={v}" for k, v in event.to_dict().items() if k != "kind")
        self.log.log(level, f"ALERT [{event.kind}] {details}")


class AlertDispatcher:
    """Queues events for a background thread that fans them out to sinks."""

    def __init__(self, sinks: Optional[List[AlertSink]] = None):
        self.sinks = sinks if sinks is not None else [LoggingAlertSink()]
        self._queue: "queue.Queue[Optional[AlertEvent]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def _ensure_started(self):
        with self._start_lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, name="alert-dispatcher", daemon=True)
                self._thread.start()

    def send(self, event: AlertEvent):
        """Queue ``event`` and return immediately."""
        self._ensure_started()
        self._queue.put(event)

    def _run(self):
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event: AlertEvent):
        for sink in self.sinks:
            try:
                sink.send(event)
            except Exception as e:
                logger.error(f"Alert sink {type(sink).__name__} failed on {event.kind}: {e}")

    def flush(self):
        """Block until every queued event has been handed to the sinks."""
        if self._thread is not None:
            self._queue.join()

    def close(self):
        if self._thread is not None and self._thread.is_alive():
            self._queue.put(None)
            self._thread.join(timeout=5)
