"""Data types shared by the inspector, orchestrator and monitors."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

TOWER_FILE_PATTERN = "tower-1_9-{pubkey}.bin"
DEFAULT_RPC_PORT = 8899


class Flavor(Enum):
    AGAVE = "agave"
    JITO = "jito"
    FIREDANCER = "firedancer"
    UNKNOWN = "unknown"

    @property
    def is_agave_family(self) -> bool:
        return self in (Flavor.AGAVE, Flavor.JITO)


class Role(Enum):
    ACTIVE = "active"
    STANDBY = "standby"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeEndpoint:
    label: str
    host: str
    user: str
    ssh_key_path: str
    funded_identity: str
    unfunded_identity: str
    vote_keypair: str
    ledger_path: str
    port: int = 22

    @property
    def session_key(self) -> Tuple[str, str, int, str]:
        return (self.user, self.host, self.port, self.ssh_key_path)

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}"


@dataclass(frozen=True)
class ValidatorPairConfig:
    vote_pubkey: str
    identity_pubkey: str
    rpc_url: str
    nodes: Tuple[NodeEndpoint, NodeEndpoint]

    def __post_init__(self):
        if len(self.nodes) != 2:
            raise ValueError(f"A validator pair needs exactly two nodes, got {len(self.nodes)}")

    @property
    def key(self) -> str:
        return self.vote_pubkey


def tower_filename(identity_pubkey: str) -> str:
    return TOWER_FILE_PATTERN.format(pubkey=identity_pubkey)


def tower_path(ledger_path: str, identity_pubkey: str) -> str:
    """Full path of the tower file for ``identity_pubkey`` inside ``ledger_path``."""
    return f"{ledger_path.rstrip('/')}/{tower_filename(identity_pubkey)}"


def derive_role(current_identity: Optional[str], identity_pubkey: str) -> Role:
    if not current_identity:
        return Role.UNKNOWN
    return Role.ACTIVE if current_identity == identity_pubkey else Role.STANDBY


@dataclass
class DetectedProcess:
    """What a process listing and version probe say about a running validator."""
    flavor: Flavor
    executable: str
    command_line: str = ""
    ledger_path: Optional[str] = None
    config_path: Optional[str] = None
    rpc_port: int = DEFAULT_RPC_PORT
    version: Optional[str] = None


@dataclass
class NodeRuntimeState:
    """A single inspection of one node. Never cached across switches."""
    endpoint: NodeEndpoint
    identity_pubkey: str
    flavor: Flavor = Flavor.UNKNOWN
    version: Optional[str] = None
    executable: Optional[str] = None
    config_path: Optional[str] = None
    detected_ledger_path: Optional[str] = None
    rpc_port: int = DEFAULT_RPC_PORT
    current_identity: Optional[str] = None
    healthy: bool = False
    shell_error: Optional[str] = None
    rpc_error: Optional[str] = None

    @property
    def ledger_path(self) -> str:
        return self.detected_ledger_path or self.endpoint.ledger_path

    @property
    def tower_path(self) -> str:
        return tower_path(self.ledger_path, self.identity_pubkey)

    @property
    def reachable(self) -> bool:
        return self.shell_error is None

    @property
    def role(self) -> Role:
        if self.shell_error or self.rpc_error:
            return Role.UNKNOWN
        return derive_role(self.current_identity, self.identity_pubkey)

    def apply_detection(self, detected: DetectedProcess):
        self.flavor = detected.flavor
        self.version = detected.version
        self.executable = detected.executable
        self.config_path = detected.config_path
        self.detected_ledger_path = detected.ledger_path
        self.rpc_port = detected.rpc_port


class StepStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PREVIEWED = "previewed"


class SwitchState(Enum):
    IDLE = "idle"
    DEMOTING_ACTIVE = "demoting_active"
    TRANSFERRING_TOWER = "transferring_tower"
    PROMOTING_STANDBY = "promoting_standby"
    VERIFYING_NEW_ACTIVE = "verifying_new_active"
    DONE = "done"
    FAILED = "failed"


class SwitchOutcome(Enum):
    DONE = "done"
    ABORTED = "aborted"
    PARTIAL = "partial"


SWITCH_STEPS = ("demote_active", "transfer_tower", "promote_standby", "verify_new_active")


@dataclass
class SwitchSession:
    """Bookkeeping for one switch invocation; discarded when it ends."""
    active: NodeRuntimeState
    standby: NodeRuntimeState
    dry_run: bool = False
    state: SwitchState = SwitchState.IDLE
    failed_step: Optional[str] = None
    step_statuses: Dict[str, StepStatus] = field(
        default_factory=lambda: {step: StepStatus.PENDING for step in SWITCH_STEPS})
    step_durations: Dict[str, float] = field(default_factory=dict)
    commands: Dict[str, str] = field(default_factory=dict)
    tower_filename: Optional[str] = None
    tower_bytes: int = 0
    total_duration: Optional[float] = None
    outcome: Optional[SwitchOutcome] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def transfer_throughput(self) -> Optional[float]:
        """Decoded tower bytes per second, if a transfer happened."""
        elapsed = self.step_durations.get("transfer_tower")
        if not elapsed or not self.tower_bytes:
            return None
        return self.tower_bytes / elapsed

    def status_summary(self) -> Dict[str, str]:
        return {step: status.value for step, status in self.step_statuses.items()}
