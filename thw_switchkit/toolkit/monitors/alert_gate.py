"""Cooldown-based suppression of repeated alerts."""

import time
from enum import Enum
from typing import Callable, Dict, Optional, Tuple


class AlertKind(Enum):
    DELINQUENCY = "delinquency"
    SHELL_FAILURE = "shell_failure"
    RPC_FAILURE = "rpc_failure"


AlertKey = Tuple[AlertKind, int, int]  # (kind, validator index, node index)


class AlertGate:
    """Lets an alert through at most once per cooldown window per key.

    Windows are per alert kind and come from configuration: delinquency wants
    a short window, infrastructure outages a long one.
    """

    def __init__(self, cooldowns: Dict[AlertKind, float], default_cooldown: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.cooldowns = dict(cooldowns)
        self.default_cooldown = default_cooldown
        self.clock = clock
        self._last_fired: Dict[AlertKey, float] = {}

    def window(self, kind: AlertKind) -> float:
        return self.cooldowns.get(kind, self.default_cooldown)

    def should_send(self, key: AlertKey) -> bool:
        now = self.clock()
        last = self._last_fired.get(key)
        if last is not None and now - last < self.window(key[0]):
            return False
        self._last_fired[key] = now
        return True

    def reset(self, key: AlertKey):
        self._last_fired.pop(key, None)

    def last_fired(self, key: AlertKey) -> Optional[float]:
        return self._last_fired.get(key)
