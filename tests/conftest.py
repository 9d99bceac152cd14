"""Shared fixtures: scripted executors and node/pair builders."""

import base64
import json

import pytest

from thw_switchkit.toolkit.core.errors import CommandFailed, ConnectionFailed
from thw_switchkit.toolkit.core.inspector import NodeInspector
from thw_switchkit.toolkit.core.models import (
    DetectedProcess,
    Flavor,
    NodeEndpoint,
    NodeRuntimeState,
    ValidatorPairConfig,
)

IDENTITY = "Ident1ty1111111111111111111111111111111111111"
UNFUNDED = "Junk1111111111111111111111111111111111111111"
VOTE = "Vote111111111111111111111111111111111111111"
AGAVE_BIN = "/home/solana/.local/share/solana/install/active_release/bin/agave-validator"
FDCTL_BIN = "/opt/firedancer/build/native/gcc/bin/fdctl"
LEDGER = "/mnt/solana_ledger"


class FakeSession:
    def __init__(self, endpoint):
        self.endpoint = endpoint
        self.host = endpoint.host


class FakeExecutor:
    """Executor double with a tiny in-memory remote filesystem.

    Commands are answered from ``responses``: the first registered fragment
    contained in the command wins. A response that is an exception is raised.
    """

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.files = {}
        self.dirs = set()
        self.writable = set()
        self.unreachable = set()
        self.closed = False

    # Scripting helpers

    def on(self, host, fragment, response):
        self.responses.setdefault(host, []).append((fragment, response))

    def add_file(self, host, path, data=b"x"):
        self.files[(host, path)] = data

    def commands(self, host=None):
        return [command for h, command in self.calls if host is None or h == host]

    def rpc_result(self, host, method, result):
        self.on(host, f'"method":"{method}"', json.dumps({"jsonrpc": "2.0", "id": 1, "result": result}))

    # Executor interface

    def session(self, endpoint):
        if endpoint.host in self.unreachable:
            raise ConnectionFailed(endpoint.host, "Connection timed out")
        return FakeSession(endpoint)

    def _respond(self, session, command):
        self.calls.append((session.host, command))
        for fragment, response in self.responses.get(session.host, []):
            if fragment in command:
                if isinstance(response, Exception):
                    raise response
                return response
        raise CommandFailed(f"no scripted response for {command!r}", command=command, exit_status=127)

    def run(self, session, command):
        return self._respond(session, command)

    def run_args(self, session, program, args):
        if program == "base64" and (session.host, args[0]) in self.files:
            self.calls.append((session.host, f"base64 {args[0]}"))
            return base64.b64encode(self.files[(session.host, args[0])]).decode()
        return self._respond(session, " ".join([program, *args]))

    def test_path(self, session, flag, path):
        self.calls.append((session.host, f"test {flag} {path}"))
        if flag == "-d":
            return (session.host, path) in self.dirs
        if flag == "-w":
            return (session.host, path) in self.writable
        return (session.host, path) in self.files

    def transfer_payload(self, session, remote_path, data):
        self.calls.append((session.host, f"transfer {remote_path}"))
        self.files[(session.host, remote_path)] = data
        return len(data)

    def close_all(self):
        self.closed = True


class FakeProbe:
    """Returns a canned DetectedProcess per host."""

    def __init__(self, detections):
        self.detections = detections

    def probe(self, session):
        detected = self.detections[session.host]
        if isinstance(detected, Exception):
            raise detected
        return detected


class TickingClock:
    """Monotonic clock that advances by ``step`` on every read."""

    def __init__(self, start=100.0, step=0.25):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


class ManualClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_endpoint(label, host, ledger=LEDGER):
    return NodeEndpoint(
        label=label,
        host=host,
        user="solana",
        ssh_key_path="",
        funded_identity="/home/solana/keys/funded.json",
        unfunded_identity="/home/solana/keys/unfunded.json",
        vote_keypair="/home/solana/keys/vote.json",
        ledger_path=ledger,
    )


def agave_detection(executable=AGAVE_BIN, flavor=Flavor.AGAVE):
    return DetectedProcess(flavor=flavor, executable=executable, ledger_path=LEDGER, version="2.2.14")


def make_state(endpoint, current_identity, flavor=Flavor.AGAVE, executable=AGAVE_BIN, healthy=True):
    state = NodeRuntimeState(endpoint=endpoint, identity_pubkey=IDENTITY)
    state.apply_detection(DetectedProcess(flavor=flavor, executable=executable, ledger_path=LEDGER))
    state.current_identity = current_identity
    state.healthy = healthy
    return state


@pytest.fixture
def node_a():
    return make_endpoint("node-a", "10.0.0.1")


@pytest.fixture
def node_b():
    return make_endpoint("node-b", "10.0.0.2")


@pytest.fixture
def pair(node_a, node_b):
    return ValidatorPairConfig(
        vote_pubkey=VOTE,
        identity_pubkey=IDENTITY,
        rpc_url="https://rpc.example.com",
        nodes=(node_a, node_b),
    )


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def inspector(executor):
    probe = FakeProbe({
        "10.0.0.1": agave_detection(),
        "10.0.0.2": agave_detection(),
    })
    return NodeInspector(executor, probe=probe)
