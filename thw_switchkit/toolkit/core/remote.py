"""
Pooled remote command execution over OpenSSH.

Sessions are OpenSSH ControlMaster connections: one master socket per
(user, host, port, key), reused by every command sent to that node until a
liveness probe says it is gone.
"""

import base64
import hashlib
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from thw_switchkit.toolkit.core.concurrency import ReadWriteLock
from thw_switchkit.toolkit.core.errors import CommandFailed, ConnectionFailed, TransferFailed
from thw_switchkit.toolkit.core.models import NodeEndpoint

logger = logging.getLogger(__name__)

SHELL_METACHARACTERS = ("2>&1", "&&", "|", ">", "<", ";", "`", "$")
PATH_TESTS = ("-e", "-f", "-d", "-r", "-w", "-x")
SSH_TRANSPORT_ERROR = 255
TRANSFER_STATUS_MARKER = "__thw_transfer_status"


def needs_shell(command: str) -> bool:
    """True if ``command`` relies on shell syntax (pipes, redirects, expansion)."""
    return any(marker in command for marker in SHELL_METACHARACTERS)


@dataclass(frozen=True)
class SshSettings:
    connect_timeout: int = 10
    persist: bool = True
    idle_persist_seconds: int = 60
    control_dir: str = "~/.ssh"
    strict_host_key_checking: str = "accept-new"  # yes|no|accept-new
    server_alive_interval: int = 30
    server_alive_count_max: int = 3


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int


class SshSession:
    """Handle on one multiplexed SSH connection to a node."""

    def __init__(self, endpoint: NodeEndpoint, settings: SshSettings):
        self.endpoint = endpoint
        self.settings = settings
        key_digest = hashlib.sha1("|".join(map(str, endpoint.session_key)).encode()).hexdigest()[:10]
        control_dir = os.path.expanduser(settings.control_dir)
        self.control_path = os.path.join(control_dir, f"thw-sk-{key_digest}")

    @property
    def host(self) -> str:
        return self.endpoint.host

    def base_args(self) -> List[str]:
        args = ["-p", str(self.endpoint.port)]
        if self.endpoint.ssh_key_path:
            args += ["-i", os.path.expanduser(self.endpoint.ssh_key_path)]
        args += [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.settings.connect_timeout}",
            "-o", f"StrictHostKeyChecking={self.settings.strict_host_key_checking}",
            "-o", f"ServerAliveInterval={self.settings.server_alive_interval}",
            "-o", f"ServerAliveCountMax={self.settings.server_alive_count_max}",
            "-o", "IdentitiesOnly=yes",
            "-o", f"ControlPath={self.control_path}",
        ]
        return args

    def command(self, remote_command: str) -> List[str]:
        return ["ssh", *self.base_args(), self.endpoint.address, remote_command]

    def __repr__(self):
        return f"SshSession({self.endpoint.address}:{self.endpoint.port})"


class RemoteExecutor:
    """Runs commands on validator nodes through cached SSH sessions."""

    def __init__(self, settings: Optional[SshSettings] = None):
        self.settings = settings or SshSettings()
        self._sessions: Dict[Tuple[str, str, int, str], SshSession] = {}
        self._lock = ReadWriteLock()

    # --- Sessions ---

    def session(self, endpoint: NodeEndpoint) -> SshSession:
        """Return a live session for ``endpoint``, opening one if needed.

        A cached session that fails its liveness probe is replaced once; if
        the replacement cannot connect, ConnectionFailed is raised.
        """
        key = endpoint.session_key
        with self._lock.read():
            cached = self._sessions.get(key)
            if cached is not None and self._is_alive(cached):
                return cached

        if cached is not None:
            logger.info(f"Cached session to {endpoint.address} is dead, reconnecting")

        session = self._open(endpoint)
        with self._lock.write():
            self._sessions[key] = session
        return session

    def _open(self, endpoint: NodeEndpoint) -> SshSession:
        session = SshSession(endpoint, self.settings)
        persist = "yes" if self.settings.persist else f"{self.settings.idle_persist_seconds}s"
        master_cmd = [
            "ssh", *session.base_args(),
            "-o", "ControlMaster=auto",
            "-o", f"ControlPersist={persist}",
            "-M", "-f", "-N",
            endpoint.address,
        ]
        logger.debug(f"Opening SSH master connection to {endpoint.address}:{endpoint.port}")
        try:
            result = subprocess.run(master_cmd, capture_output=True, text=True)
        except OSError as e:
            raise ConnectionFailed(endpoint.host, f"could not start ssh: {e}")
        if result.returncode != 0:
            detail = result.stderr.strip() or f"ssh exited with status {result.returncode}"
            raise ConnectionFailed(endpoint.host, detail)
        return session

    def _is_alive(self, session: SshSession) -> bool:
        check_cmd = ["ssh", "-o", f"ControlPath={session.control_path}", "-O", "check",
                     "-p", str(session.endpoint.port), session.endpoint.address]
        try:
            result = subprocess.run(check_cmd, capture_output=True, text=True)
        except OSError:
            return False
        return result.returncode == 0

    def close_all(self):
        """Tear down every master connection this executor opened."""
        with self._lock.write():
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            logger.debug(f"Closing SSH master connection to {session.endpoint.address}")
            exit_cmd = ["ssh", "-o", f"ControlPath={session.control_path}", "-O", "exit",
                        "-p", str(session.endpoint.port), session.endpoint.address]
            subprocess.run(exit_cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

    # --- Execution ---

    def _execute(self, session: SshSession, remote_command: str, input_data: Optional[str] = None) -> CommandResult:
        logger.debug(f"[{session.host}] $ {remote_command}")
        try:
            proc = subprocess.run(session.command(remote_command), input=input_data,
                                  capture_output=True, text=True)
        except OSError as e:
            raise ConnectionFailed(session.host, f"could not start ssh: {e}")

        # 255 is reserved by ssh for its own failures (unreachable host, auth, dead socket).
        if proc.returncode == SSH_TRANSPORT_ERROR:
            raise ConnectionFailed(session.host, proc.stderr.strip() or "ssh transport error")
        return CommandResult(stdout=proc.stdout or "", stderr=proc.stderr or "", exit_status=proc.returncode)

    @staticmethod
    def _output_or_raise(result: CommandResult, command: str) -> str:
        # Catchup checks and friends exit non-zero while printing exactly what we need.
        stdout = result.stdout.strip()
        if stdout:
            return stdout
        stderr = result.stderr.strip()
        if result.exit_status != 0 and stderr:
            raise CommandFailed(stderr, command=command, exit_status=result.exit_status)
        return ""

    @staticmethod
    def _remote_form(command: str) -> str:
        if needs_shell(command):
            return f"bash -c {shlex.quote(command)}"
        return shlex.join(shlex.split(command))

    def run(self, session: SshSession, command: str) -> str:
        """Run ``command`` and return its stdout."""
        result = self._execute(session, self._remote_form(command))
        return self._output_or_raise(result, command)

    def run_args(self, session: SshSession, program: str, args: Sequence[str]) -> str:
        """Run ``program`` with ``args`` as a literal argv, no shell expansion."""
        argv = [program, *args]
        result = self._execute(session, shlex.join(argv))
        return self._output_or_raise(result, " ".join(argv))

    def test_path(self, session: SshSession, flag: str, path: str) -> bool:
        """Evaluate ``test <flag> <path>`` remotely."""
        if flag not in PATH_TESTS:
            raise ValueError(f"Unsupported path test: {flag}")
        result = self._execute(session, shlex.join(["test", flag, path]))
        return result.exit_status == 0

    def run_streaming(self, session: SshSession, command: str, predicate: Callable[[str], bool]) -> str:
        """Read stdout line by line until ``predicate(accumulated)`` holds.

        The local ssh client is killed as soon as the predicate matches, so a
        remote command that never exits cannot hold the caller. Returns all
        output read so far.

        No switch step calls this; it is part of the executor interface for
        callers that watch long-running remote tools such as catchup.
        """
        remote_command = self._remote_form(command)
        logger.debug(f"[{session.host}] $ {remote_command} (streaming)")
        try:
            proc = subprocess.Popen(session.command(remote_command), stdout=subprocess.PIPE,
                                    stderr=subprocess.DEVNULL, text=True)
        except OSError as e:
            raise ConnectionFailed(session.host, f"could not start ssh: {e}")

        accumulated = ""
        try:
            for line in proc.stdout:
                accumulated += line
                if predicate(accumulated):
                    logger.debug(f"[{session.host}] stream predicate matched, detaching")
                    break
        finally:
            if proc.poll() is None:
                proc.kill()
            proc.stdout.close()
            proc.wait()
        return accumulated

    def transfer_payload(self, session: SshSession, remote_path: str, data: bytes) -> int:
        """Write ``data`` to ``remote_path`` without staging a local file.

        The bytes travel base64-encoded over the session's stdin into
        ``base64 -d | dd``. Returns the number of raw bytes sent.
        """
        encoded = base64.b64encode(data).decode("ascii")
        script = (
            f"base64 -d | dd of={shlex.quote(remote_path)} status=none; "
            f"echo \"{TRANSFER_STATUS_MARKER} ${{PIPESTATUS[0]}} ${{PIPESTATUS[1]}}\""
        )
        result = self._execute(session, f"bash -c {shlex.quote(script)}", input_data=encoded)
        decode_status, write_status = self._parse_transfer_status(result.stdout)
        stderr = result.stderr.strip()

        if decode_status is None:
            raise TransferFailed("transfer", stderr or "no status reported by remote pipeline", remote_path)
        if decode_status != 0:
            raise TransferFailed("decode", stderr, remote_path)
        if write_status != 0:
            raise TransferFailed("write", stderr, remote_path)
        return len(data)

    @staticmethod
    def _parse_transfer_status(stdout: str) -> Tuple[Optional[int], Optional[int]]:
        for line in reversed(stdout.splitlines()):
            parts = line.split()
            if len(parts) == 3 and parts[0] == TRANSFER_STATUS_MARKER:
                try:
                    return int(parts[1]), int(parts[2])
                except ValueError:
                    break
        return None, None
