"""
Node inspection: flavor, paths, identity and health of one validator node.

Identity and health come from the validator's own JSON-RPC port, reached with
curl from the node itself over the SSH session, so they work even when the
port is firewalled from the outside.
"""

import json
import logging
from typing import Any, List, Optional

from thw_switchkit.toolkit.core.errors import LoopbackRpcError, SwitchKitError
from thw_switchkit.toolkit.core.flavor_probe import FlavorProbe
from thw_switchkit.toolkit.core.models import DEFAULT_RPC_PORT, DetectedProcess, NodeEndpoint, NodeRuntimeState

logger = logging.getLogger(__name__)


def build_rpc_request(method: str, params: Optional[List[Any]] = None) -> str:
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params or []
    }
    return json.dumps(payload, separators=(",", ":"))


def build_loopback_curl(method: str, params: Optional[List[Any]] = None, port: int = DEFAULT_RPC_PORT) -> str:
    return (
        f"curl -s http://localhost:{port} -X POST "
        f"-H 'Content-Type: application/json' -d '{build_rpc_request(method, params)}' 2>&1"
    )


def parse_rpc_response(output: str) -> Any:
    """Return ``result`` from a JSON-RPC response or raise LoopbackRpcError."""
    try:
        response = json.loads(output)
    except ValueError:
        raise LoopbackRpcError(f"Unparseable RPC response: {output[:200]!r}")
    if not isinstance(response, dict):
        raise LoopbackRpcError(f"Unexpected RPC response: {output[:200]!r}")
    if response.get("error"):
        error = response["error"]
        message = error.get("message") if isinstance(error, dict) else error
        raise LoopbackRpcError(f"RPC error: {message}")
    return response.get("result")


class NodeInspector:
    """Builds fresh NodeRuntimeState snapshots for validator nodes."""

    def __init__(self, executor, probe: Optional[FlavorProbe] = None):
        self.executor = executor
        self.probe = probe or FlavorProbe(executor)

    def detect(self, session) -> DetectedProcess:
        """Detect flavor and paths on an open session. Raises on shell failure."""
        return self.probe.probe(session)

    def rpc_call(self, session, method: str, params: Optional[List[Any]] = None,
                 port: int = DEFAULT_RPC_PORT) -> Any:
        output = self.executor.run(session, build_loopback_curl(method, params, port))
        return parse_rpc_response(output)

    def get_identity(self, session, port: int = DEFAULT_RPC_PORT) -> str:
        result = self.rpc_call(session, "getIdentity", port=port)
        identity = result.get("identity") if isinstance(result, dict) else None
        if not identity:
            raise LoopbackRpcError(f"getIdentity returned no identity: {result!r}")
        return identity

    def get_health(self, session, port: int = DEFAULT_RPC_PORT) -> bool:
        return self.rpc_call(session, "getHealth", port=port) == "ok"

    def inspect(self, endpoint: NodeEndpoint, identity_pubkey: str) -> NodeRuntimeState:
        """Inspect one node. Never raises; failures land in the returned state."""
        state = NodeRuntimeState(endpoint=endpoint, identity_pubkey=identity_pubkey)
        try:
            session = self.executor.session(endpoint)
            state.apply_detection(self.detect(session))
        except SwitchKitError as e:
            logger.warning(f"[{endpoint.label}] shell inspection failed: {e}")
            state.shell_error = str(e)
            return state

        try:
            state.current_identity = self.get_identity(session, state.rpc_port)
        except SwitchKitError as e:
            logger.warning(f"[{endpoint.label}] identity query failed: {e}")
            state.rpc_error = str(e)
            return state

        try:
            state.healthy = self.get_health(session, state.rpc_port)
        except SwitchKitError as e:
            # getHealth answers with an error object while the node is behind.
            logger.debug(f"[{endpoint.label}] health query failed: {e}")
            state.healthy = False

        logger.debug(f"[{endpoint.label}] role={state.role.value} healthy={state.healthy} "
                     f"identity={state.current_identity}")
        return state
