"""Consecutive-failure and outage tracking per node and channel."""

import time
from enum import Enum
from typing import Callable, Dict, Optional, Tuple


class Channel(Enum):
    SHELL = "shell"
    RPC = "rpc"


class FailureTracker:
    """Tracks one channel's current outage.

    ``first_failure_time`` marks the start of the current outage and is only
    set by the first failure after a success.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.consecutive_failures = 0
        self.first_failure_time: Optional[float] = None
        self.last_failure_time: Optional[float] = None
        self.last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures == 0

    def record_success(self):
        self.consecutive_failures = 0
        self.first_failure_time = None
        self.last_error = None

    def record_failure(self, error: str):
        now = self.clock()
        self.consecutive_failures += 1
        if self.first_failure_time is None:
            self.first_failure_time = now
        self.last_failure_time = now
        self.last_error = error

    def seconds_since_outage_start(self) -> Optional[float]:
        if self.first_failure_time is None:
            return None
        return self.clock() - self.first_failure_time

    def __repr__(self):
        return (f"FailureTracker(consecutive_failures={self.consecutive_failures}, "
                f"last_error={self.last_error!r})")


class HealthTracker:
    """FailureTrackers for every (node index, channel) of one validator pair."""

    def __init__(self, node_count: int = 2, clock: Callable[[], float] = time.monotonic):
        self._trackers: Dict[Tuple[int, Channel], FailureTracker] = {
            (idx, channel): FailureTracker(clock)
            for idx in range(node_count)
            for channel in Channel
        }

    def tracker(self, node_idx: int, channel: Channel) -> FailureTracker:
        return self._trackers[(node_idx, channel)]

    def shell(self, node_idx: int) -> FailureTracker:
        return self.tracker(node_idx, Channel.SHELL)

    def rpc(self, node_idx: int) -> FailureTracker:
        return self.tracker(node_idx, Channel.RPC)
