"""
Manual identity switch between the two nodes of a validator pair.
"""

import logging
import os
from typing import List, Optional, Sequence, Tuple

from thw_switchkit.config import get_config
from thw_switchkit.toolkit.core.alerts import AlertDispatcher, SwitchResultEvent
from thw_switchkit.toolkit.core.concurrency import get_pair_locks
from thw_switchkit.toolkit.core.errors import PartialSwitch, SwitchKitError, ValidationFailed
from thw_switchkit.toolkit.core.inspector import NodeInspector
from thw_switchkit.toolkit.core.models import Flavor, NodeRuntimeState, Role, SwitchSession, ValidatorPairConfig
from thw_switchkit.toolkit.core.remote import RemoteExecutor
from thw_switchkit.toolkit.core.orchestrator import SwitchOrchestrator
from thw_switchkit.toolkit.display.switch_display import SwitchDisplay

logger = logging.getLogger(__name__)


def resolve_roles(states: Sequence[NodeRuntimeState]) -> Tuple[NodeRuntimeState, NodeRuntimeState]:
    """Return (active, standby), or raise ValidationFailed if that cannot be told."""
    issues = []
    for state in states:
        if not state.reachable:
            issues.append(f"{state.endpoint.label} is unreachable: {state.shell_error}")
        elif state.rpc_error:
            issues.append(f"{state.endpoint.label} did not report its identity: {state.rpc_error}")
    if issues:
        raise ValidationFailed(issues)

    actives = [state for state in states if state.role == Role.ACTIVE]
    if len(actives) != 1:
        labels = ", ".join(f"{s.endpoint.label}={s.current_identity}" for s in states)
        raise ValidationFailed([f"expected exactly one node running the funded identity, found {len(actives)} ({labels})"])

    active = actives[0]
    standby = next(state for state in states if state is not active)
    return active, standby


def collect_preflight_issues(executor, pair: ValidatorPairConfig,
                             active: NodeRuntimeState, standby: NodeRuntimeState) -> List[str]:
    """Every reason the switch cannot safely start. Empty means go."""
    issues = []

    for node in pair.nodes:
        if node.ssh_key_path and not os.path.isfile(os.path.expanduser(node.ssh_key_path)):
            issues.append(f"SSH key for {node.label} not found locally: {node.ssh_key_path}")

    remote_checks = []
    for state in (active, standby):
        if not state.executable:
            issues.append(f"{state.endpoint.label}: no running validator executable detected")
        else:
            remote_checks.append((state, "-x", state.executable, "validator executable"))
        if state.flavor == Flavor.FIREDANCER and not state.config_path:
            issues.append(f"{state.endpoint.label}: Firedancer is running without a --config file")

    remote_checks += [
        (active, "-f", active.endpoint.unfunded_identity, "unfunded identity keypair"),
        (active, "-f", active.tower_path, "tower file"),
        (standby, "-f", standby.endpoint.funded_identity, "funded identity keypair"),
        (standby, "-d", standby.ledger_path, "ledger directory"),
        (standby, "-w", standby.ledger_path, "writable ledger directory"),
    ]

    for state, flag, path, description in remote_checks:
        remote = executor.session(state.endpoint)
        logger.debug(f"[{state.endpoint.label}] checking {description}: test {flag} {path}")
        if not executor.test_path(remote, flag, path):
            issues.append(f"{state.endpoint.label}: {description} missing or unusable ({path})")

    return issues


def _report(dispatcher: AlertDispatcher, pair: ValidatorPairConfig, session: SwitchSession,
            error: Optional[str] = None):
    dispatcher.send(SwitchResultEvent(
        validator_identity=pair.identity_pubkey,
        from_label=session.active.endpoint.label,
        to_label=session.standby.endpoint.label,
        outcome=session.outcome.value if session.outcome else "unknown",
        dry_run=session.dry_run,
        total_duration=session.total_duration,
        step_statuses=session.status_summary(),
        error=error,
    ))


def manage_switch(pair_index: int = 0, dry_run: bool = False, interactive: bool = True,
                  config_path: Optional[str] = None, display: Optional[SwitchDisplay] = None) -> bool:
    """
    Main entry point for a manual switch. Returns True on success or when the
    operator declines at the confirmation prompt.
    """
    display = display or SwitchDisplay()
    try:
        config = get_config(custom_path=config_path)
        pairs = config.validator_pairs()
        ssh_settings = config.ssh_settings()
    except SwitchKitError as e:
        logger.error(str(e))
        return False

    if not 0 <= pair_index < len(pairs):
        logger.error(f"Validator pair {pair_index} does not exist; {len(pairs)} configured")
        return False
    pair = pairs[pair_index]

    locks = get_pair_locks()
    if not locks.try_acquire(pair.key):
        logger.error(f"A switch for {pair.identity_pubkey} is already in progress")
        return False

    executor = RemoteExecutor(ssh_settings)
    inspector = NodeInspector(executor)
    dispatcher = AlertDispatcher()
    try:
        logger.info(f"Inspecting nodes of {pair.identity_pubkey}")
        states = [inspector.inspect(node, pair.identity_pubkey) for node in pair.nodes]
        active, standby = resolve_roles(states)
        logger.info(f"Active: {active.endpoint.label} ({active.flavor.value}), "
                    f"standby: {standby.endpoint.label} ({standby.flavor.value})")

        issues = collect_preflight_issues(executor, pair, active, standby)
        if issues:
            raise ValidationFailed(issues)
        logger.info("Pre-flight checks passed")

        display.show_plan(active, standby, dry_run)
        if interactive and not display.confirm():
            logger.warning("Switch aborted by user.")
            return True

        orchestrator = SwitchOrchestrator(executor, inspector, pair)
        try:
            session = orchestrator.execute(active, standby, dry_run=dry_run)
        except PartialSwitch as e:
            display.show_summary(e.session)
            _report(dispatcher, pair, e.session, error=str(e.cause))
            logger.error(str(e))
            return False

        display.show_summary(session)
        _report(dispatcher, pair, session)
        if dry_run:
            logger.info("Dry run complete. No identity was changed.")
        else:
            logger.info(f"Switch complete: {session.standby.endpoint.label} is now active")
        return True

    except SwitchKitError as e:
        logger.error(str(e))
        return False
    finally:
        dispatcher.flush()
        dispatcher.close()
        executor.close_all()
        locks.release(pair.key)
