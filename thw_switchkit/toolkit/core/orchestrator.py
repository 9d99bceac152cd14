"""
The identity switch protocol.

A switch moves the funded identity from the active node to the standby node in
four strictly ordered steps:

    1. demote_active      active node -> unfunded identity
    2. transfer_tower     tower file copied active -> standby
    3. promote_standby    standby node -> funded identity (requires the tower)
    4. verify_new_active  health/identity check on the new active node

Step 2 never starts unless step 1 succeeded, and step 3 never starts unless
step 2 succeeded, so both nodes can never vote at once. Failures in steps 1-2
are reported as SwitchAborted. A failure in step 3 is a PartialSwitch: the old
active node is already demoted and an operator has to finish the job. Step 4
only warns.

In dry-run mode steps 1, 3 and 4 are rendered but not executed. Step 2 still
copies the real tower file to the standby so that the transfer time reported
by a dry run is the time a live switch will actually take. This overwrites the
standby's copy of the funded identity's tower, which the standby only reads
when it is promoted.
"""

import base64
import binascii
import logging
import time
from contextlib import contextmanager
from typing import Callable, List

from thw_switchkit.toolkit.core.errors import (
    CommandFailed, ExecutableNotFound, PartialSwitch, SwitchAborted, SwitchKitError, TowerNotFound
)
from thw_switchkit.toolkit.core.flavor_probe import render_command
from thw_switchkit.toolkit.core.inspector import build_loopback_curl
from thw_switchkit.toolkit.core.models import (
    Flavor, NodeRuntimeState, StepStatus, SwitchOutcome, SwitchSession, SwitchState,
    ValidatorPairConfig, tower_filename, tower_path
)

logger = logging.getLogger(__name__)

STEP_TITLES = {
    "demote_active": "Switch active node to unfunded identity",
    "transfer_tower": "Transfer tower file",
    "promote_standby": "Switch standby node to funded identity",
    "verify_new_active": "Verify new active node",
}


def build_set_identity_command(state: NodeRuntimeState, keypair_path: str, require_tower: bool = False) -> List[str]:
    """argv that makes the validator on ``state``'s node adopt ``keypair_path``."""
    if not state.executable:
        raise ExecutableNotFound(state.flavor.value)

    if state.flavor == Flavor.FIREDANCER:
        if not state.config_path:
            raise ExecutableNotFound(f"{state.flavor.value} (no --config on running fdctl)")
        return [state.executable, "set-identity", "--config", state.config_path, keypair_path]

    argv = [state.executable, "-l", state.ledger_path, "set-identity"]
    if require_tower:
        argv.append("--require-tower")
    argv.append(keypair_path)
    return argv


class SwitchOrchestrator:
    """Runs the switch steps for one validator pair."""

    def __init__(self, executor, inspector, pair: ValidatorPairConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.executor = executor
        self.inspector = inspector
        self.pair = pair
        self.clock = clock

    def new_session(self, active: NodeRuntimeState, standby: NodeRuntimeState,
                    dry_run: bool = False) -> SwitchSession:
        return SwitchSession(active=active, standby=standby, dry_run=dry_run)

    @contextmanager
    def _step(self, session: SwitchSession, name: str, state: SwitchState):
        session.state = state
        number = list(STEP_TITLES).index(name) + 1
        logger.info(f"--- Step {number}: {STEP_TITLES[name]}{' (dry run)' if session.dry_run else ''} ---")
        start = self.clock()
        try:
            yield
        except Exception:
            session.step_statuses[name] = StepStatus.FAILED
            session.failed_step = name
            raise
        finally:
            session.step_durations[name] = self.clock() - start

    # --- Steps ---

    def demote_active(self, session: SwitchSession):
        """Step 1: point the active validator at its unfunded identity."""
        active = session.active
        with self._step(session, "demote_active", SwitchState.DEMOTING_ACTIVE):
            remote = self.executor.session(active.endpoint)
            # Re-detect: the binary or ledger may have changed since the node was last inspected.
            active.apply_detection(self.inspector.detect(remote))
            argv = build_set_identity_command(active, active.endpoint.unfunded_identity)
            session.commands["demote_active"] = render_command(argv)

            if session.dry_run:
                logger.info(f"[{active.endpoint.label}] would run: {session.commands['demote_active']}")
                session.step_statuses["demote_active"] = StepStatus.PREVIEWED
                return

            self.executor.run_args(remote, argv[0], argv[1:])
            session.step_statuses["demote_active"] = StepStatus.SUCCEEDED
            logger.info(f"[{active.endpoint.label}] switched to unfunded identity")

    def transfer_tower(self, session: SwitchSession):
        """Step 2: copy the tower file from the active to the standby ledger."""
        active, standby = session.active, session.standby
        with self._step(session, "transfer_tower", SwitchState.TRANSFERRING_TOWER):
            source = active.tower_path
            destination = tower_path(standby.ledger_path, self.pair.identity_pubkey)
            session.tower_filename = tower_filename(self.pair.identity_pubkey)
            session.commands["transfer_tower"] = (
                f"base64 {source} | ssh {standby.endpoint.address} 'base64 -d | dd of={destination}'"
            )

            active_remote = self.executor.session(active.endpoint)
            if not self.executor.test_path(active_remote, "-f", source):
                raise TowerNotFound(source)

            encoded = self.executor.run_args(active_remote, "base64", [source])
            try:
                data = base64.b64decode(encoded)
            except (binascii.Error, ValueError) as e:
                raise CommandFailed(f"tower read returned invalid base64: {e}", command=f"base64 {source}")
            if not data:
                raise CommandFailed("tower file is empty", command=f"base64 {source}")

            standby_remote = self.executor.session(standby.endpoint)
            session.tower_bytes = self.executor.transfer_payload(standby_remote, destination, data)
            session.step_statuses["transfer_tower"] = StepStatus.SUCCEEDED

        elapsed = session.step_durations["transfer_tower"]
        throughput = session.transfer_throughput
        rate = f"{throughput / 1024 / 1024:.2f} MB/s" if throughput else "n/a"
        logger.info(f"Transferred {session.tower_bytes} bytes to {standby.endpoint.label} "
                    f"in {elapsed * 1000:.0f} ms ({rate})")

    def promote_standby(self, session: SwitchSession):
        """Step 3: point the standby validator at the funded identity."""
        standby = session.standby
        with self._step(session, "promote_standby", SwitchState.PROMOTING_STANDBY):
            argv = build_set_identity_command(standby, standby.endpoint.funded_identity, require_tower=True)
            session.commands["promote_standby"] = render_command(argv)

            if session.dry_run:
                logger.info(f"[{standby.endpoint.label}] would run: {session.commands['promote_standby']}")
                session.step_statuses["promote_standby"] = StepStatus.PREVIEWED
                return

            remote = self.executor.session(standby.endpoint)
            self.executor.run_args(remote, argv[0], argv[1:])
            session.step_statuses["promote_standby"] = StepStatus.SUCCEEDED
            logger.info(f"[{standby.endpoint.label}] switched to funded identity")

    def verify_new_active(self, session: SwitchSession):
        """Step 4: ask the new active node how it is doing. Only ever warns."""
        standby = session.standby
        with self._step(session, "verify_new_active", SwitchState.VERIFYING_NEW_ACTIVE):
            session.commands["verify_new_active"] = build_loopback_curl("getHealth", port=standby.rpc_port)
            if session.dry_run:
                session.step_statuses["verify_new_active"] = StepStatus.PREVIEWED
                return

            try:
                remote = self.executor.session(standby.endpoint)
                identity = self.inspector.get_identity(remote, standby.rpc_port)
                healthy = self.inspector.get_health(remote, standby.rpc_port)
            except SwitchKitError as e:
                self._verification_warning(session, f"could not query new active node: {e}")
                return

            standby.current_identity = identity
            standby.healthy = healthy
            if identity != self.pair.identity_pubkey:
                self._verification_warning(session, f"new active node reports identity {identity}")
            elif not healthy:
                self._verification_warning(session, "new active node is not healthy yet, monitor catchup")
            else:
                session.step_statuses["verify_new_active"] = StepStatus.SUCCEEDED
                logger.info(f"[{standby.endpoint.label}] healthy and voting as {identity}")

    def _verification_warning(self, session: SwitchSession, message: str):
        logger.warning(f"[{session.standby.endpoint.label}] verification: {message}")
        session.warnings.append(message)
        session.step_statuses["verify_new_active"] = StepStatus.FAILED

    # --- Full run ---

    def execute(self, active: NodeRuntimeState, standby: NodeRuntimeState, dry_run: bool = False) -> SwitchSession:
        """Run all four steps in order and return the finished session.

        Raises SwitchAborted if step 1 or 2 fails and PartialSwitch if step 3
        fails; the session is attached to the exception.
        """
        session = self.new_session(active, standby, dry_run)
        start = self.clock()

        try:
            self.demote_active(session)
            self.transfer_tower(session)
        except SwitchKitError as e:
            self._finish(session, start, SwitchOutcome.ABORTED)
            if not dry_run and session.step_statuses["demote_active"] == StepStatus.SUCCEEDED:
                logger.error(f"[{active.endpoint.label}] is demoted but the standby was NOT promoted. "
                             f"Manual intervention required.")
            raise SwitchAborted(session.status_summary(), cause=e, session=session) from e

        try:
            self.promote_standby(session)
        except SwitchKitError as e:
            self._finish(session, start, SwitchOutcome.PARTIAL)
            logger.error("Promotion failed after the active node was demoted. Manual intervention required.")
            raise PartialSwitch(session.status_summary(), cause=e, session=session) from e

        self.verify_new_active(session)
        self._finish(session, start, SwitchOutcome.DONE)
        return session

    def _finish(self, session: SwitchSession, start: float, outcome: SwitchOutcome):
        session.total_duration = self.clock() - start
        session.outcome = outcome
        session.state = SwitchState.DONE if outcome == SwitchOutcome.DONE else SwitchState.FAILED
