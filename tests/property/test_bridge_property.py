"""
Property-based tests for the bridge core using Hypothesis.

This module tests the bridge invariants:
- Digest determinism and sensitivity to every field
- Order-independent quorum accumulation
- Exactly-once settlement under resubmission
"""

import dataclasses

from hypothesis import given, settings, strategies as st

from quorumbridge.bridge.bridge_manager import BridgeManager
from quorumbridge.bridge.bridge_types import (
    MAX_U64,
    MAX_U128,
    AttestationOutcome,
    BridgeConfig,
    BridgeEvent,
)
from quorumbridge.bridge.codec import digest, encode_event

GOV = "governance"
RELAYERS = ["r1", "r2", "r3", "r4", "r5"]

identifiers = st.text(min_size=1, max_size=20).filter(lambda s: s.strip())

events = st.builds(
    BridgeEvent,
    source_chain_id=identifiers,
    source_tx_id=identifiers,
    asset_id=identifiers,
    amount=st.integers(min_value=1, max_value=MAX_U128),
    destination_account=identifiers,
    sequence_nonce=st.integers(min_value=0, max_value=MAX_U64),
)


def make_bridge(threshold: int) -> BridgeManager:
    bridge = BridgeManager(BridgeConfig(min_confirmations=0, vote_expiry_blocks=None))
    bridge.balances.create_asset(GOV, "USDC")
    for relayer_id in RELAYERS:
        bridge.add_relayer(GOV, relayer_id)
    bridge.set_quorum(GOV, threshold)
    return bridge


class TestDigestProperties:
    """Property-based tests for the digest codec."""

    @given(events)
    def test_digest_deterministic(self, event):
        """Test re-encoding the same fields always yields the same digest."""
        copy = BridgeEvent(**event.to_dict())
        assert encode_event(copy) == encode_event(event)
        assert digest(copy) == digest(event)

    @given(events, events)
    def test_distinct_events_distinct_encodings(self, a, b):
        """Test the canonical encoding is injective."""
        if a != b:
            assert encode_event(a) != encode_event(b)
            assert digest(a) != digest(b)

    @given(events, st.integers(min_value=1, max_value=MAX_U128))
    def test_amount_change_changes_digest(self, event, amount):
        changed = dataclasses.replace(event, amount=amount)
        if amount != event.amount:
            assert digest(changed) != digest(event)

    @given(events, identifiers)
    def test_recipient_change_changes_digest(self, event, recipient):
        changed = dataclasses.replace(event, destination_account=recipient)
        if recipient != event.destination_account:
            assert digest(changed) != digest(event)


class TestQuorumProperties:
    """Property-based tests for quorum accumulation."""

    @settings(max_examples=50, deadline=None)
    @given(
        st.integers(min_value=1, max_value=len(RELAYERS)),
        st.permutations(RELAYERS),
    )
    def test_order_independent_quorum(self, threshold, order):
        """Test any submission order settles exactly once at the M-th distinct vote."""
        bridge = make_bridge(threshold)
        event = BridgeEvent("ethereum", "0x1", "USDC", 100, "alice", 1)

        outcomes = [bridge.submit_attestation(r, event, 0) for r in order]

        assert outcomes[threshold - 1] is AttestationOutcome.QUORUM_REACHED
        assert outcomes.count(AttestationOutcome.QUORUM_REACHED) == 1
        assert all(o is AttestationOutcome.RECORDED for o in outcomes[: threshold - 1])
        assert all(o is AttestationOutcome.ALREADY_PROCESSED for o in outcomes[threshold:])
        assert bridge.balances.balance_of("alice", "USDC") == 100
        assert len(bridge.ledger) == 1

    @settings(max_examples=50, deadline=None)
    @given(
        st.lists(st.sampled_from(RELAYERS), min_size=1, max_size=30),
        st.integers(min_value=1, max_value=len(RELAYERS)),
    )
    def test_resubmission_storm_settles_once(self, submissions, threshold):
        """Test repeated submissions never credit more than once or add weight."""
        bridge = make_bridge(threshold)
        event = BridgeEvent("ethereum", "0x1", "USDC", 100, "alice", 1)

        for relayer_id in submissions:
            bridge.submit_attestation(relayer_id, event, 0)

        distinct = len(set(submissions))
        if distinct >= threshold:
            assert bridge.balances.balance_of("alice", "USDC") == 100
            assert bridge.ledger.contains("ethereum", "0x1")
            assert len(bridge.ledger) == 1
        else:
            assert bridge.balances.balance_of("alice", "USDC") == 0
            assert bridge.get_record(event).vote_count == distinct
