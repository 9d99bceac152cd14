"""Exception types raised across the switch and monitoring layers."""

from typing import Dict, List, Optional


class SwitchKitError(Exception):
    """Base class for all SwitchKit errors."""


class ConfigError(SwitchKitError):
    """Configuration is missing or invalid."""
    def __init__(self, issues: List[str]):
        super().__init__("Invalid configuration: " + "; ".join(issues))
        self.issues = issues


class ConnectionFailed(SwitchKitError):
    """An SSH session to a host could not be established or was lost."""
    def __init__(self, host: str, detail: str):
        super().__init__(f"Connection to {host} failed: {detail}")
        self.host = host
        self.detail = detail


class CommandFailed(SwitchKitError):
    """A remote command produced no output and exited non-zero."""
    def __init__(self, stderr: str, command: Optional[str] = None, exit_status: Optional[int] = None):
        message = f"Command failed: {stderr}" if stderr else "Command failed"
        if command:
            message = f"{message} (command: {command})"
        super().__init__(message)
        self.stderr = stderr
        self.command = command
        self.exit_status = exit_status


class TransferFailed(CommandFailed):
    """A payload transfer failed in its decode or write stage."""
    def __init__(self, stage: str, stderr: str, remote_path: str):
        super().__init__(stderr, command=f"{stage} {remote_path}")
        self.stage = stage
        self.remote_path = remote_path

    def __str__(self):
        detail = f": {self.stderr}" if self.stderr else ""
        return f"{self.stage} failed for {self.remote_path}{detail}"


class TowerNotFound(SwitchKitError):
    def __init__(self, path: str):
        super().__init__(f"Tower file not found: {path}")
        self.path = path


class ExecutableNotFound(SwitchKitError):
    def __init__(self, flavor: str):
        super().__init__(f"No validator executable found for flavor '{flavor}'")
        self.flavor = flavor


class LoopbackRpcError(SwitchKitError):
    """The node-local JSON-RPC endpoint returned an error or garbage."""


class ChainRpcError(SwitchKitError):
    """The cluster JSON-RPC endpoint failed or returned an error."""


class Timeout(SwitchKitError):
    def __init__(self, op: str, elapsed: float):
        super().__init__(f"{op} timed out after {elapsed:.1f}s")
        self.op = op
        self.elapsed = elapsed


class PartialSwitch(SwitchKitError):
    """A switch stopped after it had started mutating node state.

    ``step_statuses`` maps each step name to its final status so an operator
    can see exactly which of demote/transfer/promote went through.
    """
    def __init__(self, step_statuses: Dict[str, str], cause: Optional[BaseException] = None, session=None):
        summary = ", ".join(f"{step}={status}" for step, status in step_statuses.items())
        message = f"Switch incomplete ({summary})"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.step_statuses = step_statuses
        self.cause = cause
        self.session = session

    @property
    def promotion_attempted(self) -> bool:
        return self.step_statuses.get("promote_standby") not in (None, "pending")


class SwitchAborted(PartialSwitch):
    """The switch stopped before promotion; no node was made active."""


class ValidationFailed(SwitchKitError):
    def __init__(self, issues: List[str]):
        super().__init__("Pre-flight validation failed:\n  - " + "\n  - ".join(issues))
        self.issues = issues
