"""
Continuous monitoring of validator pairs with alerting and optional auto-failover.
"""

import logging
import queue
from typing import Optional

from thw_switchkit.config import get_config
from thw_switchkit.toolkit.core.alerts import AlertDispatcher
from thw_switchkit.toolkit.core.emergency import EmergencyFailoverCoordinator
from thw_switchkit.toolkit.core.errors import SwitchKitError
from thw_switchkit.toolkit.core.inspector import NodeInspector
from thw_switchkit.toolkit.core.remote import RemoteExecutor
from thw_switchkit.toolkit.core.rpc_core import ChainRpcClient
from thw_switchkit.toolkit.display.switch_display import SwitchDisplay
from thw_switchkit.toolkit.monitors.alert_gate import AlertGate
from thw_switchkit.toolkit.monitors.decision import FailoverDecisionEngine
from thw_switchkit.toolkit.monitors.pair_monitor import MonitorSupervisor, PairMonitor

logger = logging.getLogger(__name__)


def run_monitor(config_path: Optional[str] = None, pair_index: Optional[int] = None,
                display: Optional[SwitchDisplay] = None) -> bool:
    """Monitor the configured pairs until interrupted. Returns False on setup errors."""
    display = display or SwitchDisplay()
    try:
        config = get_config(custom_path=config_path)
        pairs = config.validator_pairs()
        alert_settings = config.alert_settings()
        ssh_settings = config.ssh_settings()
        monitor_settings = config.monitor_settings()
    except SwitchKitError as e:
        logger.error(str(e))
        return False

    indexed = list(enumerate(pairs))
    if pair_index is not None:
        if not 0 <= pair_index < len(pairs):
            logger.error(f"Validator pair {pair_index} does not exist; {len(pairs)} configured")
            return False
        indexed = [indexed[pair_index]]

    if alert_settings.auto_failover_enabled:
        logger.warning("AUTO-FAILOVER IS ENABLED: the standby will be promoted when the active node stops voting")

    executor = RemoteExecutor(ssh_settings)
    inspector = NodeInspector(executor)
    rpc_client = ChainRpcClient(timeout=monitor_settings.rpc_timeout_seconds)
    dispatcher = AlertDispatcher()
    coordinator = EmergencyFailoverCoordinator(
        executor, inspector, dispatcher,
        step_timeout=monitor_settings.emergency_step_timeout_seconds,
    )
    engine = FailoverDecisionEngine(
        delinquency_threshold=alert_settings.delinquency_threshold_seconds,
        ssh_failure_threshold=alert_settings.ssh_failure_threshold_seconds,
        rpc_failure_threshold=alert_settings.rpc_failure_threshold_seconds,
        auto_failover_enabled=alert_settings.auto_failover_enabled,
    )

    snapshots = queue.Queue()
    monitors = [
        PairMonitor(
            index, pair, inspector, rpc_client, engine,
            AlertGate(alert_settings.cooldowns),
            dispatcher, coordinator, snapshots,
            interval=monitor_settings.interval_seconds,
            alerts_enabled=alert_settings.enabled,
        )
        for index, pair in indexed
    ]

    supervisor = MonitorSupervisor(monitors, snapshots, on_snapshot=display.show_monitor_status)
    supervisor.install_signal_handlers()
    logger.info(f"Monitoring {len(monitors)} validator pair(s). Press Ctrl+C to quit.")
    try:
        supervisor.run()
    finally:
        dispatcher.flush()
        dispatcher.close()
        rpc_client.close()
        executor.close_all()
    return True
