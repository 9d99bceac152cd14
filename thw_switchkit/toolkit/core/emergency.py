"""
Emergency takeover: promote the standby when the active node stopped voting.

Unlike a manual switch, demoting the active node and copying its tower are
best-effort here. When the active node is down both usually fail, and the
standby must be promoted anyway. Only promotion is required.
"""

import logging
import multiprocessing
import threading
import time
from dataclasses import dataclass, replace
from multiprocessing.dummy import Pool as ThreadPool
from typing import Callable, Optional

from thw_switchkit.toolkit.core.alerts import EmergencyTakeoverEvent
from thw_switchkit.toolkit.core.concurrency import PairLockRegistry, get_pair_locks
from thw_switchkit.toolkit.core.errors import SwitchKitError, Timeout
from thw_switchkit.toolkit.core.models import NodeRuntimeState, StepStatus, SwitchSession, ValidatorPairConfig
from thw_switchkit.toolkit.core.orchestrator import SwitchOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT = 10.0


@dataclass
class EmergencyTakeoverResult:
    primary_switch_success: bool = False
    tower_copy_success: bool = False
    standby_switch_success: bool = False
    total_duration: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.standby_switch_success


def _merge_step(op: str, scratch: SwitchSession, session: SwitchSession):
    session.step_statuses[op] = scratch.step_statuses[op]
    session.step_durations.update(scratch.step_durations)
    session.commands.update(scratch.commands)
    session.warnings.extend(scratch.warnings)
    if scratch.failed_step is not None:
        session.failed_step = scratch.failed_step
    if op == "transfer_tower":
        session.tower_filename = scratch.tower_filename
        session.tower_bytes = scratch.tower_bytes


class EmergencyFailoverCoordinator:
    """Runs at most one takeover per validator pair at a time."""

    def __init__(self, executor, inspector, dispatcher, step_timeout: float = DEFAULT_STEP_TIMEOUT,
                 locks: Optional[PairLockRegistry] = None, clock: Callable[[], float] = time.monotonic):
        self.executor = executor
        self.inspector = inspector
        self.dispatcher = dispatcher
        self.step_timeout = step_timeout
        self.locks = locks or get_pair_locks()
        self.clock = clock

    def trigger(self, pair: ValidatorPairConfig, active: NodeRuntimeState,
                standby: NodeRuntimeState) -> Optional[EmergencyTakeoverResult]:
        """Take over for ``pair`` unless a switch is already running for it.

        Returns None when the trigger was ignored.
        """
        if not self.locks.try_acquire(pair.key):
            logger.warning(f"Switch already in progress for {pair.identity_pubkey}, ignoring failover trigger")
            return None
        try:
            return self._takeover(pair, active, standby)
        finally:
            self.locks.release(pair.key)

    def _run_with_deadline(self, op: str, func, *args):
        """Run ``func`` with the step deadline. The remote command is left running on expiry."""
        expired = threading.Event()

        def run():
            try:
                return func(*args)
            finally:
                if expired.is_set():
                    logger.warning(f"Emergency {op} finished after its {self.step_timeout}s deadline, result discarded")

        pool = ThreadPool(1)
        async_result = pool.apply_async(run)
        pool.close()
        start = self.clock()
        try:
            return async_result.get(timeout=self.step_timeout)
        except multiprocessing.TimeoutError:
            expired.set()
            raise Timeout(op, self.clock() - start)

    def _best_effort(self, op: str, func, session: SwitchSession) -> bool:
        # Each step writes to its own copy; only a step that returned in time is merged back.
        scratch = replace(session, step_statuses=dict(session.step_statuses),
                          step_durations={}, commands={}, warnings=[])
        try:
            self._run_with_deadline(op, func, scratch)
        except Timeout as e:
            session.step_statuses[op] = StepStatus.FAILED
            session.failed_step = op
            logger.warning(f"Emergency {op} failed, continuing: {e}")
            return False
        except SwitchKitError as e:
            _merge_step(op, scratch, session)
            logger.warning(f"Emergency {op} failed, continuing: {e}")
            return False
        _merge_step(op, scratch, session)
        logger.info(f"Emergency {op}: succeeded")
        return True

    def _takeover(self, pair: ValidatorPairConfig, active: NodeRuntimeState,
                  standby: NodeRuntimeState) -> EmergencyTakeoverResult:
        start = self.clock()
        logger.critical(f"EMERGENCY TAKEOVER: {active.endpoint.label} is not voting, "
                        f"failing over to {standby.endpoint.label}")

        orchestrator = SwitchOrchestrator(self.executor, self.inspector, pair, clock=self.clock)
        session = orchestrator.new_session(active, standby, dry_run=False)
        result = EmergencyTakeoverResult()

        result.primary_switch_success = self._best_effort("demote_active", orchestrator.demote_active, session)
        result.tower_copy_success = self._best_effort("transfer_tower", orchestrator.transfer_tower, session)

        try:
            orchestrator.promote_standby(session)
            result.standby_switch_success = True
        except SwitchKitError as e:
            result.error = f"Failed to activate standby: {e}"
            logger.critical(f"EMERGENCY TAKEOVER FAILED: {standby.endpoint.label} could not be promoted: {e}")

        result.total_duration = self.clock() - start
        if result.success:
            logger.critical(
                f"Emergency takeover complete in {result.total_duration:.2f}s "
                f"(demote: {result.primary_switch_success}, tower: {result.tower_copy_success}, promote: True)"
            )

        self.dispatcher.send(EmergencyTakeoverEvent(
            validator_identity=pair.identity_pubkey,
            active_label=active.endpoint.label,
            standby_label=standby.endpoint.label,
            primary_switch_success=result.primary_switch_success,
            tower_copy_success=result.tower_copy_success,
            standby_switch_success=result.standby_switch_success,
            total_duration=result.total_duration,
            error=result.error,
        ))
        return result
