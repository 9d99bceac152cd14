"""Unified configuration system for THW-SwitchKit."""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

# Handle different Python versions for TOML support
if sys.version_info >= (3, 11):
    import tomllib as tomli
else:
    import tomli

from thw_switchkit.toolkit.core.errors import ConfigError
from thw_switchkit.toolkit.core.models import NodeEndpoint, ValidatorPairConfig
from thw_switchkit.toolkit.core.remote import SshSettings
from thw_switchkit.toolkit.monitors.alert_gate import AlertKind

logger = logging.getLogger(__name__)

NODE_REQUIRED_FIELDS = ("label", "host", "user", "funded_identity", "unfunded_identity",
                        "vote_keypair", "ledger_path")
PAIR_REQUIRED_FIELDS = ("vote_pubkey", "identity_pubkey", "rpc_url")


@dataclass(frozen=True)
class AlertSettings:
    enabled: bool = True
    delinquency_threshold_seconds: float = 30.0
    ssh_failure_threshold_seconds: float = 1800.0
    rpc_failure_threshold_seconds: float = 1800.0
    auto_failover_enabled: bool = False
    cooldowns: Dict[AlertKind, float] = field(default_factory=lambda: {
        AlertKind.DELINQUENCY: 900.0,
        AlertKind.SHELL_FAILURE: 1800.0,
        AlertKind.RPC_FAILURE: 1800.0,
    })


@dataclass(frozen=True)
class MonitorSettings:
    interval_seconds: float = 5.0
    emergency_step_timeout_seconds: float = 10.0
    rpc_timeout_seconds: float = 3.0


class Config:
    """Unified configuration manager for all SwitchKit components."""

    def __init__(self, custom_config_path: Optional[str] = None):
        """Initialize configuration with unified loading strategy.

        Args:
            custom_config_path: Path to a custom config file (highest priority)
        """
        self.config_data = {}

        # Define config file paths in order of priority
        self.config_paths = self._get_config_paths(custom_config_path)

        # Load configuration, starting with defaults and overriding
        self._load_configuration()

    def _get_config_paths(self, custom_path: Optional[str] = None) -> List[Path]:
        """Get configuration file paths in priority order (highest priority first)."""
        paths = []

        # 1. Custom path (if provided) - highest priority
        if custom_path:
            custom = Path(custom_path).expanduser()
            if not custom.exists():
                raise ConfigError([f"config file {custom} does not exist"])
            paths.append(custom)

        # 2. Project root local config (for development)
        project_root = Path(__file__).parent.parent
        paths.append(project_root / "config.local.toml")

        # 3. User config in ~/.config (for user customization)
        paths.append(Path.home() / ".config" / "thw-switchkit" / "config.toml")

        # 4. Project default config (for baseline values)
        paths.append(project_root / "config.default.toml")

        return paths

    def _load_configuration(self):
        """Load configuration from all paths, with priority override."""
        config = {}
        issues = []

        # Reverse the paths list to load from lowest to highest priority
        for path in reversed(self.config_paths):
            if path.exists():
                try:
                    with open(path, "rb") as f:
                        new_config = tomli.load(f)
                except (OSError, tomli.TOMLDecodeError) as e:
                    issues.append(f"error reading {path}: {e}")
                    continue
                logger.debug(f"Loaded configuration from {path}")
                # Deep merge with existing config
                self._deep_merge(config, new_config)

        if issues:
            raise ConfigError(issues)

        self.config_data = config

    def _deep_merge(self, target: Dict[str, Any], source: Dict[str, Any]):
        """Deep merge source dict into target dict."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The key to retrieve, can use dot notation for nested keys
            default: Default value if key doesn't exist

        Returns:
            The configuration value or default
        """
        keys = key.split('.')
        result = self.config_data

        for k in keys:
            if isinstance(result, dict) and k in result:
                result = result[k]
            else:
                return default

        return result

    # Typed accessors

    def validator_pairs(self) -> List[ValidatorPairConfig]:
        return load_validator_pairs(self.get("validators", []))

    def alert_settings(self) -> AlertSettings:
        return load_alert_settings(self.get("alerts", {}))

    def ssh_settings(self) -> SshSettings:
        return load_ssh_settings(self.get("ssh", {}))

    def monitor_settings(self) -> MonitorSettings:
        return load_monitor_settings(self.get("monitor", {}))


def _number(section: Dict[str, Any], key: str, default: float, where: str, issues: List[str]) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        issues.append(f"{where}.{key} must be a non-negative number, got {value!r}")
        return default
    return value


def _bool(section: Dict[str, Any], key: str, default: bool, where: str, issues: List[str]) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        issues.append(f"{where}.{key} must be true or false, got {value!r}")
        return default
    return value


def _load_node(raw: Dict[str, Any], where: str, issues: List[str]) -> Optional[NodeEndpoint]:
    missing = [name for name in NODE_REQUIRED_FIELDS if not raw.get(name)]
    if missing:
        issues.append(f"{where} is missing {', '.join(missing)}")
        return None
    port = raw.get("port", 22)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        issues.append(f"{where}.port must be a TCP port, got {port!r}")
        return None
    return NodeEndpoint(
        label=raw["label"],
        host=raw["host"],
        user=raw["user"],
        ssh_key_path=raw.get("ssh_key_path", ""),
        funded_identity=raw["funded_identity"],
        unfunded_identity=raw["unfunded_identity"],
        vote_keypair=raw["vote_keypair"],
        ledger_path=raw["ledger_path"],
        port=port,
    )


def load_validator_pairs(raw_pairs: List[Dict[str, Any]]) -> List[ValidatorPairConfig]:
    """Build validator pairs from the ``[[validators]]`` tables.

    Raises:
        ConfigError: Listing every problem found, not just the first
    """
    if not raw_pairs:
        raise ConfigError(["no [[validators]] configured"])

    issues: List[str] = []
    pairs = []
    for i, raw in enumerate(raw_pairs):
        where = f"validators[{i}]"
        missing = [name for name in PAIR_REQUIRED_FIELDS if not raw.get(name)]
        if missing:
            issues.append(f"{where} is missing {', '.join(missing)}")
            continue

        raw_nodes = raw.get("nodes", [])
        if len(raw_nodes) != 2:
            issues.append(f"{where} must define exactly 2 nodes, got {len(raw_nodes)}")
            continue

        nodes = [_load_node(node, f"{where}.nodes[{j}]", issues) for j, node in enumerate(raw_nodes)]
        if None in nodes:
            continue
        if nodes[0].label == nodes[1].label:
            issues.append(f"{where} node labels must differ, both are {nodes[0].label!r}")
            continue

        pairs.append(ValidatorPairConfig(
            vote_pubkey=raw["vote_pubkey"],
            identity_pubkey=raw["identity_pubkey"],
            rpc_url=raw["rpc_url"],
            nodes=(nodes[0], nodes[1]),
        ))

    if issues:
        raise ConfigError(issues)
    return pairs


def load_alert_settings(raw: Dict[str, Any]) -> AlertSettings:
    issues: List[str] = []
    defaults = AlertSettings()
    raw_cooldowns = raw.get("cooldowns", {})
    cooldowns = {
        kind: _number(raw_cooldowns, f"{kind.value}_seconds", defaults.cooldowns[kind], "alerts.cooldowns", issues)
        for kind in AlertKind
    }
    settings = AlertSettings(
        enabled=_bool(raw, "enabled", defaults.enabled, "alerts", issues),
        delinquency_threshold_seconds=_number(
            raw, "delinquency_threshold_seconds", defaults.delinquency_threshold_seconds, "alerts", issues),
        ssh_failure_threshold_seconds=_number(
            raw, "ssh_failure_threshold_seconds", defaults.ssh_failure_threshold_seconds, "alerts", issues),
        rpc_failure_threshold_seconds=_number(
            raw, "rpc_failure_threshold_seconds", defaults.rpc_failure_threshold_seconds, "alerts", issues),
        auto_failover_enabled=_bool(raw, "auto_failover_enabled", defaults.auto_failover_enabled, "alerts", issues),
        cooldowns=cooldowns,
    )
    if issues:
        raise ConfigError(issues)
    return settings


def load_ssh_settings(raw: Dict[str, Any]) -> SshSettings:
    issues: List[str] = []
    defaults = SshSettings()
    strict = raw.get("strict_host_key_checking", defaults.strict_host_key_checking)
    if strict not in ("yes", "no", "accept-new"):
        issues.append(f"ssh.strict_host_key_checking must be yes, no or accept-new, got {strict!r}")
    settings = SshSettings(
        connect_timeout=int(_number(raw, "connect_timeout", defaults.connect_timeout, "ssh", issues)),
        persist=_bool(raw, "persist", defaults.persist, "ssh", issues),
        idle_persist_seconds=int(_number(raw, "idle_persist_seconds", defaults.idle_persist_seconds, "ssh", issues)),
        control_dir=raw.get("control_dir", defaults.control_dir),
        strict_host_key_checking=strict,
        server_alive_interval=int(_number(raw, "server_alive_interval", defaults.server_alive_interval, "ssh", issues)),
        server_alive_count_max=int(_number(raw, "server_alive_count_max", defaults.server_alive_count_max, "ssh", issues)),
    )
    if issues:
        raise ConfigError(issues)
    return settings


def load_monitor_settings(raw: Dict[str, Any]) -> MonitorSettings:
    issues: List[str] = []
    defaults = MonitorSettings()
    settings = MonitorSettings(
        interval_seconds=_number(raw, "interval_seconds", defaults.interval_seconds, "monitor", issues),
        emergency_step_timeout_seconds=_number(
            raw, "emergency_step_timeout_seconds", defaults.emergency_step_timeout_seconds, "monitor", issues),
        rpc_timeout_seconds=_number(raw, "rpc_timeout_seconds", defaults.rpc_timeout_seconds, "monitor", issues),
    )
    if settings.interval_seconds == 0:
        issues.append("monitor.interval_seconds must be greater than zero")
    if issues:
        raise ConfigError(issues)
    return settings


# Global configuration instance
_config_instance = None

def get_config(custom_path=None):
    """Get the config instance, creating it if necessary."""
    global _config_instance
    if _config_instance is None or custom_path:
        _config_instance = Config(custom_path)
    return _config_instance
