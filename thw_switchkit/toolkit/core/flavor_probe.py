"""
Detection of which validator client a node runs, and where its files live.

All parsing of remote text output (process listings, ``--version`` banners,
the Firedancer TOML config) lives here so the orchestration code only ever
sees a DetectedProcess.
"""

import logging
import shlex
import sys
from typing import List, Optional, Tuple

# Handle different Python versions for TOML support
if sys.version_info >= (3, 11):
    import tomllib as tomli
else:
    import tomli

from thw_switchkit.toolkit.core.errors import ExecutableNotFound
from thw_switchkit.toolkit.core.models import DetectedProcess, Flavor

logger = logging.getLogger(__name__)

# Checked in order; the first marker found on a listing line wins.
EXECUTABLE_MARKERS = (
    ("fdctl", Flavor.FIREDANCER),
    ("agave-validator", Flavor.AGAVE),
    ("solana-validator", Flavor.UNKNOWN),
)
PROCESS_LISTING_CMD = "ps aux | grep -E 'solana-validator|agave-validator|fdctl' | grep -v grep"
JITO_MARKER = "JitoLabs"
AGAVE_MARKER = "Agave"


def _flag_value(tokens: List[str], *flags: str) -> Optional[str]:
    """Value following any of ``flags`` in ``tokens`` (``--flag v`` or ``--flag=v``)."""
    for i, token in enumerate(tokens):
        for flag in flags:
            if token == flag and i + 1 < len(tokens):
                return tokens[i + 1]
            if token.startswith(flag + "="):
                return token.split("=", 1)[1]
    return None


def _find_executable(tokens: List[str], marker: str) -> Optional[str]:
    for token in tokens:
        if token.endswith("/" + marker) or token == marker:
            return token
    return None


def parse_process_listing(listing: str) -> Optional[DetectedProcess]:
    """Pick the validator process out of ``ps aux`` output.

    Returns None when no known validator binary is running.
    """
    lines = [line for line in listing.splitlines() if line.strip()]
    for marker, flavor in EXECUTABLE_MARKERS:
        candidates = [line for line in lines if marker in line]
        if not candidates:
            continue
        # fdctl forks helper processes; the one carrying --config is the one we want.
        candidates.sort(key=lambda line: "--config" not in line)
        for line in candidates:
            tokens = line.split()
            executable = _find_executable(tokens, marker)
            if not executable:
                continue
            detected = DetectedProcess(flavor=flavor, executable=executable, command_line=line)
            if flavor == Flavor.FIREDANCER:
                detected.config_path = _flag_value(tokens, "--config")
            else:
                detected.ledger_path = _flag_value(tokens, "--ledger", "-l")
                port = _flag_value(tokens, "--rpc-port")
                if port and port.isdigit():
                    detected.rpc_port = int(port)
            return detected
    return None


def parse_version(flavor: Flavor, version_output: str) -> Tuple[Flavor, Optional[str]]:
    """Extract the version string and refine Agave vs Jito from the client marker."""
    first_line = next((line for line in version_output.splitlines() if line.strip()), "")
    tokens = first_line.split()
    if not tokens:
        return flavor, None

    if flavor == Flavor.FIREDANCER:
        return flavor, tokens[0]

    version = tokens[1] if len(tokens) > 1 else None
    if JITO_MARKER in version_output:
        return Flavor.JITO, version
    if AGAVE_MARKER in version_output or flavor == Flavor.AGAVE:
        return Flavor.AGAVE, version
    return flavor, version


def parse_firedancer_ledger_path(config_text: str) -> Optional[str]:
    """Read ``[ledger].path`` from a Firedancer config, expanding {user}/{name}."""
    try:
        data = tomli.loads(config_text)
    except tomli.TOMLDecodeError as e:
        logger.warning(f"Could not parse Firedancer config: {e}")
        return None

    path = data.get("ledger", {}).get("path")
    if not path:
        return None
    substitutions = {"user": data.get("user", ""), "name": data.get("name", "fd1")}
    for key, value in substitutions.items():
        path = path.replace("{" + key + "}", str(value))
    return path


class FlavorProbe:
    """Runs the detection commands on a node and parses what comes back."""

    def __init__(self, executor):
        self.executor = executor

    def probe(self, session) -> DetectedProcess:
        listing = self.executor.run(session, PROCESS_LISTING_CMD)
        detected = parse_process_listing(listing)
        if detected is None:
            raise ExecutableNotFound(Flavor.UNKNOWN.value)

        version_output = self.executor.run_args(session, detected.executable, ["--version"])
        detected.flavor, detected.version = parse_version(detected.flavor, version_output)

        if detected.flavor == Flavor.FIREDANCER and detected.config_path:
            config_text = self.executor.run_args(session, "cat", [detected.config_path])
            detected.ledger_path = parse_firedancer_ledger_path(config_text)

        logger.debug(
            f"[{session.host}] detected {detected.flavor.value} {detected.version or '?'} "
            f"at {detected.executable} (ledger: {detected.ledger_path or 'n/a'}, rpc port: {detected.rpc_port})"
        )
        return detected


def render_command(argv: List[str]) -> str:
    return shlex.join(argv)
