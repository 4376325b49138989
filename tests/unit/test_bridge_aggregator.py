"""
Tests for the attestation aggregator.

This module tests:
- Vote recording and quorum triggering
- Idempotent voting and equivocation detection
- Rejection order for unauthorized, unconfigured and non-final attestations
- Vote-set expiry, settlement retry and vote revocation
"""

import dataclasses

import pytest

from quorumbridge.bridge.assets import AssetLedger
from quorumbridge.bridge.bridge_types import AttestationOutcome, BridgeEvent
from quorumbridge.bridge.codec import digest
from quorumbridge.bridge.finality import BlockClock, FinalityGate
from quorumbridge.bridge.ledger import ProcessedEventLedger
from quorumbridge.bridge.settlement import SettlementEngine
from quorumbridge.bridge.validators.aggregator import AttestationAggregator
from quorumbridge.bridge.validators.registry import RelayerRegistry
from quorumbridge.errors import (
    ConflictingAttestation,
    InvalidEvent,
    InvalidQuorum,
    NotAuthorizedRelayer,
    NotYetFinal,
    UnknownPendingEvent,
)

GOV = "governance"
FINAL = 12


def make_event(tx="0x1", amount=100, asset="USDC") -> BridgeEvent:
    return BridgeEvent("ethereum", tx, asset, amount, "alice", 1)


def build(threshold=2, relayers=("r1", "r2", "r3"), **kwargs):
    registry = RelayerRegistry(GOV)
    for relayer_id in relayers:
        registry.add_relayer(GOV, relayer_id)
    if threshold:
        registry.set_quorum(GOV, threshold)

    assets = AssetLedger(GOV)
    assets.create_asset(GOV, "USDC")
    clock = BlockClock()
    ledger = ProcessedEventLedger()
    settlement = SettlementEngine(ledger, assets, clock)
    aggregator = AttestationAggregator(
        registry=registry,
        finality_gate=FinalityGate(min_confirmations=FINAL),
        ledger=ledger,
        settlement=settlement,
        clock=clock,
        **kwargs,
    )
    return aggregator, assets


class TestSubmitAttestation:
    """Test attestation submission."""

    def test_recorded_then_quorum(self):
        """Test the M-th distinct vote settles the event."""
        aggregator, assets = build()
        event = make_event()

        assert aggregator.submit_attestation("r1", event, FINAL) is AttestationOutcome.RECORDED
        assert aggregator.get_record(digest(event)).voters == {"r1"}
        assert assets.balance_of("alice", "USDC") == 0

        assert aggregator.submit_attestation("r2", event, FINAL) is AttestationOutcome.QUORUM_REACHED
        assert assets.balance_of("alice", "USDC") == 100
        assert aggregator.ledger.is_processed(event)
        assert aggregator.get_record(digest(event)) is None

    def test_late_vote_after_settlement(self):
        """Test a vote after settlement is an idempotent no-op."""
        aggregator, assets = build()
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.submit_attestation("r2", event, FINAL)

        outcome = aggregator.submit_attestation("r3", event, FINAL)

        assert outcome is AttestationOutcome.ALREADY_PROCESSED
        assert assets.balance_of("alice", "USDC") == 100

    def test_threshold_one(self):
        aggregator, assets = build(threshold=1)
        outcome = aggregator.submit_attestation("r1", make_event(), FINAL)
        assert outcome is AttestationOutcome.QUORUM_REACHED
        assert assets.balance_of("alice", "USDC") == 100

    def test_duplicate_vote(self):
        """Test resubmission by the same relayer does not add weight."""
        aggregator, assets = build()
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)

        outcome = aggregator.submit_attestation("r1", event, FINAL + 5)

        assert outcome is AttestationOutcome.ALREADY_VOTED
        assert aggregator.get_record(digest(event)).vote_count == 1
        assert assets.balance_of("alice", "USDC") == 0
        assert aggregator.has_voted("r1", event)

    def test_unauthorized_relayer(self):
        aggregator, _ = build()
        with pytest.raises(NotAuthorizedRelayer):
            aggregator.submit_attestation("mallory", make_event(), FINAL)
        assert aggregator.pending_records() == []

    def test_disabled_relayer(self):
        aggregator, _ = build()
        aggregator.registry.remove_relayer(GOV, "r3")
        with pytest.raises(NotAuthorizedRelayer):
            aggregator.submit_attestation("r3", make_event(), FINAL)

    def test_quorum_not_configured(self):
        aggregator, _ = build(threshold=0)
        with pytest.raises(InvalidQuorum):
            aggregator.submit_attestation("r1", make_event(), FINAL)
        assert aggregator.pending_records() == []

    def test_not_yet_final(self):
        """Test an attestation below the finality window is rejected and not counted."""
        aggregator, _ = build()
        event = make_event()

        with pytest.raises(NotYetFinal):
            aggregator.submit_attestation("r1", event, FINAL - 1)

        assert aggregator.get_record(digest(event)) is None
        assert aggregator.submit_attestation("r1", event, FINAL) is AttestationOutcome.RECORDED

    def test_invalid_event(self):
        aggregator, _ = build()
        with pytest.raises(InvalidEvent):
            aggregator.submit_attestation("r1", make_event(amount=0), FINAL)

    def test_unauthorized_checked_before_finality(self):
        aggregator, _ = build()
        with pytest.raises(NotAuthorizedRelayer):
            aggregator.submit_attestation("mallory", make_event(), 0)

    def test_independent_events(self):
        """Test votes for different source transactions are tallied separately."""
        aggregator, assets = build()
        aggregator.submit_attestation("r1", make_event("0x1"), FINAL)
        aggregator.submit_attestation("r2", make_event("0x2"), FINAL)

        assert assets.balance_of("alice", "USDC") == 0
        assert len(aggregator.pending_records()) == 2


class TestEquivocation:
    """Test conflicting attestations by the same relayer."""

    def test_conflicting_digest_rejected(self):
        """Test a second digest for the same source tx is flagged and not counted."""
        aggregator, _ = build()
        honest = make_event(amount=100)
        forged = make_event(amount=1_000_000)
        aggregator.submit_attestation("r1", honest, FINAL)

        with pytest.raises(ConflictingAttestation) as exc_info:
            aggregator.submit_attestation("r1", forged, FINAL)

        equivocation = exc_info.value.equivocation
        assert equivocation.relayer_id == "r1"
        assert equivocation.first_digest == digest(honest)
        assert equivocation.conflicting_digest == digest(forged)
        assert aggregator.equivocations() == [equivocation]
        assert aggregator.get_record(digest(forged)) is None
        assert aggregator.get_record(digest(honest)).voters == {"r1"}

    def test_different_relayers_different_digests(self):
        """Test two relayers disagreeing is not an equivocation."""
        aggregator, _ = build()
        aggregator.submit_attestation("r1", make_event(amount=100), FINAL)
        outcome = aggregator.submit_attestation("r2", make_event(amount=200), FINAL)

        assert outcome is AttestationOutcome.RECORDED
        assert aggregator.equivocations() == []

    def test_competing_digest_cleared_on_settlement(self):
        """Test only the first digest to reach quorum settles."""
        aggregator, assets = build()
        honest = make_event(amount=100)
        other = make_event(amount=200)
        aggregator.submit_attestation("r3", other, FINAL)
        aggregator.submit_attestation("r1", honest, FINAL)
        aggregator.submit_attestation("r2", honest, FINAL)

        assert assets.balance_of("alice", "USDC") == 100
        assert aggregator.get_record(digest(other)) is None
        assert aggregator.submit_attestation("r1", other, FINAL) is AttestationOutcome.ALREADY_PROCESSED


class TestExpiry:
    """Test eviction of stale vote sets."""

    def test_evicted_after_window(self):
        aggregator, _ = build(vote_expiry_blocks=1000)
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)

        aggregator.clock.advance(999)
        assert aggregator.evict_expired() == []

        aggregator.clock.advance(1)
        assert aggregator.evict_expired() == [digest(event)]
        assert aggregator.get_record(digest(event)) is None
        assert not aggregator.has_voted("r1", event)

    def test_resubmission_starts_fresh(self):
        """Test a relayer may vote again after its vote set expired."""
        aggregator, _ = build(vote_expiry_blocks=10)
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.clock.advance(10)

        outcome = aggregator.submit_attestation("r1", event, FINAL)

        assert outcome is AttestationOutcome.RECORDED
        record = aggregator.get_record(digest(event))
        assert record.first_seen_height == 10
        assert record.voters == {"r1"}

    def test_expiry_disabled(self):
        aggregator, _ = build(vote_expiry_blocks=None)
        aggregator.submit_attestation("r1", make_event(), FINAL)
        aggregator.clock.advance(10_000)
        assert aggregator.evict_expired() == []
        assert len(aggregator.pending_records()) == 1


class TestSettlementFailure:
    """Test quorum-complete events whose credit fails."""

    def test_failed_settlement_stays_pending(self):
        aggregator, assets = build()
        event = make_event(asset="DAI")
        aggregator.submit_attestation("r1", event, FINAL)

        outcome = aggregator.submit_attestation("r2", event, FINAL)

        assert outcome is AttestationOutcome.SETTLEMENT_FAILED
        record = aggregator.get_record(digest(event))
        assert record.quorum_reached is True
        assert record.last_error == "UNKNOWN_ASSET"
        assert not aggregator.ledger.is_processed(event)

    def test_failed_record_survives_expiry(self):
        aggregator, _ = build(vote_expiry_blocks=5)
        event = make_event(asset="DAI")
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.submit_attestation("r2", event, FINAL)
        aggregator.clock.advance(100)

        assert aggregator.evict_expired() == []

    def test_retry_settlement(self):
        """Test retry settles once the fault is corrected."""
        aggregator, assets = build()
        event = make_event(asset="DAI")
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.submit_attestation("r2", event, FINAL)

        assets.create_asset(GOV, "DAI")
        outcome = aggregator.retry_settlement(digest(event))

        assert outcome is AttestationOutcome.QUORUM_REACHED
        assert assets.balance_of("alice", "DAI") == 100
        assert aggregator.get_record(digest(event)) is None
        assert aggregator.settlement.list_failures() == []

    def test_extra_vote_retries(self):
        """Test a further vote on a failed record re-attempts settlement."""
        aggregator, assets = build()
        event = make_event(asset="DAI")
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.submit_attestation("r2", event, FINAL)
        assets.create_asset(GOV, "DAI")

        outcome = aggregator.submit_attestation("r3", event, FINAL)

        assert outcome is AttestationOutcome.QUORUM_REACHED
        assert assets.balance_of("alice", "DAI") == 100

    def test_retry_unknown_digest(self):
        aggregator, _ = build()
        with pytest.raises(UnknownPendingEvent):
            aggregator.retry_settlement(digest(make_event()))

    def test_retry_below_threshold(self):
        aggregator, _ = build()
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        assert aggregator.retry_settlement(digest(event)) is AttestationOutcome.RECORDED


class TestGovernanceInteraction:
    """Test how registry changes affect pending votes."""

    def test_votes_of_removed_relayer_remain(self):
        """Test votes cast while enabled keep counting by default."""
        aggregator, assets = build()
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.registry.remove_relayer(GOV, "r1")

        outcome = aggregator.submit_attestation("r2", event, FINAL)

        assert outcome is AttestationOutcome.QUORUM_REACHED
        assert assets.balance_of("alice", "USDC") == 100

    def test_revoke_votes_on_removal(self):
        """Test the revocation policy purges the removed relayer's votes."""
        aggregator, assets = build(revoke_votes_on_removal=True)
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.registry.remove_relayer(GOV, "r1")

        assert aggregator.get_record(digest(event)).voters == set()
        outcome = aggregator.submit_attestation("r2", event, FINAL)

        assert outcome is AttestationOutcome.RECORDED
        assert assets.balance_of("alice", "USDC") == 0

    def test_settle_ready_after_lowering_threshold(self):
        """Test pending vote sets that meet a lowered threshold settle."""
        aggregator, assets = build(threshold=3)
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        aggregator.submit_attestation("r2", event, FINAL)
        aggregator.registry.set_quorum(GOV, 2)

        receipts = aggregator.settle_ready()

        assert [r.source_tx_id for r in receipts] == ["0x1"]
        assert assets.balance_of("alice", "USDC") == 100

    def test_settle_ready_settles_one_digest_per_source(self):
        """Test two competing digests that both meet the threshold settle once."""
        aggregator, assets = build(threshold=3)
        a = make_event(amount=100)
        b = make_event(amount=200)
        aggregator.submit_attestation("r1", a, FINAL)
        aggregator.submit_attestation("r2", b, FINAL)
        aggregator.registry.set_quorum(GOV, 1)

        receipts = aggregator.settle_ready()

        assert len(receipts) == 1
        assert len(aggregator.ledger) == 1
        expected = min(digest(a), digest(b))
        assert receipts[0].digest == expected
        assert assets.balance_of("alice", "USDC") == (100 if expected == digest(a) else 200)

    def test_restore_drops_settled_records(self):
        aggregator, _ = build()
        event = make_event()
        aggregator.submit_attestation("r1", event, FINAL)
        stale = aggregator.get_record(digest(event))
        aggregator.submit_attestation("r2", event, FINAL)

        aggregator.restore([dataclasses.replace(stale, voters={"r1"})], [])

        assert aggregator.pending_records() == []
