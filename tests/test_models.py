"""Tests for the shared data model."""

import pytest

from thw_switchkit.toolkit.core.models import (
    Flavor,
    NodeRuntimeState,
    Role,
    StepStatus,
    SwitchSession,
    ValidatorPairConfig,
    derive_role,
    tower_filename,
    tower_path,
)

from conftest import IDENTITY, UNFUNDED, VOTE, make_endpoint, make_state


class TestTowerPath:

    def test_tower_path_is_bit_exact(self):
        assert tower_path("/mnt/solana_ledger", "Abc123") == "/mnt/solana_ledger/tower-1_9-Abc123.bin"

    def test_trailing_slash_is_ignored(self):
        assert tower_path("/mnt/solana_ledger/", "Abc123") == "/mnt/solana_ledger/tower-1_9-Abc123.bin"

    def test_tower_filename(self):
        assert tower_filename("Abc123") == "tower-1_9-Abc123.bin"


class TestRole:

    def test_matching_identity_is_active(self):
        assert derive_role(IDENTITY, IDENTITY) == Role.ACTIVE

    def test_other_identity_is_standby(self):
        assert derive_role(UNFUNDED, IDENTITY) == Role.STANDBY

    def test_missing_identity_is_unknown(self):
        assert derive_role(None, IDENTITY) == Role.UNKNOWN

    def test_role_unknown_on_shell_or_rpc_error(self, node_a):
        state = make_state(node_a, IDENTITY)
        assert state.role == Role.ACTIVE
        state.rpc_error = "connection refused"
        assert state.role == Role.UNKNOWN
        state.rpc_error = None
        state.shell_error = "timed out"
        assert state.role == Role.UNKNOWN

    def test_role_recomputed_from_identity(self, node_a):
        state = make_state(node_a, IDENTITY)
        state.current_identity = UNFUNDED
        assert state.role == Role.STANDBY


class TestRuntimeState:

    def test_ledger_falls_back_to_configured_path(self):
        endpoint = make_endpoint("n", "h", ledger="/data/ledger")
        state = NodeRuntimeState(endpoint=endpoint, identity_pubkey=IDENTITY)
        assert state.ledger_path == "/data/ledger"
        assert state.tower_path == f"/data/ledger/tower-1_9-{IDENTITY}.bin"

    def test_detected_ledger_wins(self, node_a):
        state = NodeRuntimeState(endpoint=node_a, identity_pubkey=IDENTITY, detected_ledger_path="/other")
        assert state.ledger_path == "/other"

    def test_agave_family(self):
        assert Flavor.AGAVE.is_agave_family
        assert Flavor.JITO.is_agave_family
        assert not Flavor.FIREDANCER.is_agave_family


class TestValidatorPairConfig:

    def test_requires_two_nodes(self, node_a):
        with pytest.raises(ValueError):
            ValidatorPairConfig(vote_pubkey=VOTE, identity_pubkey=IDENTITY, rpc_url="http://x", nodes=(node_a,))

    def test_is_immutable(self, pair):
        with pytest.raises(Exception):
            pair.rpc_url = "http://other"


class TestSwitchSession:

    def test_starts_with_all_steps_pending(self, node_a, node_b):
        session = SwitchSession(active=make_state(node_a, IDENTITY), standby=make_state(node_b, UNFUNDED))
        assert set(session.status_summary().values()) == {StepStatus.PENDING.value}
        assert session.transfer_throughput is None

    def test_throughput(self, node_a, node_b):
        session = SwitchSession(active=make_state(node_a, IDENTITY), standby=make_state(node_b, UNFUNDED))
        session.tower_bytes = 2048
        session.step_durations["transfer_tower"] = 0.5
        assert session.transfer_throughput == 4096
