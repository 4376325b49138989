"""
Attestation aggregator.

Collects relayer votes keyed by event digest and hands an event to the
settlement engine once the number of distinct votes for its digest reaches
the quorum threshold. Votes are accumulated as sets, so the resulting state
depends only on which attestations arrived, never on their order.
"""

import contextlib
import threading
from typing import Dict, List, Optional, Tuple

from ...crypto.hashing import Hash
from ...errors import (
    AlreadyProcessed,
    ConflictingAttestation,
    InvalidQuorum,
    NotAuthorizedRelayer,
    SettlementError,
    UnknownPendingEvent,
)
from ...logging import get_logger
from ..bridge_types import (
    MAX_U128,
    AttestationOutcome,
    AttestationRecord,
    BridgeEvent,
    Equivocation,
    SettlementReceipt,
    SourceKey,
)
from ..codec import digest, validate_event
from ..finality import BlockClock, FinalityGate
from ..ledger import ProcessedEventLedger
from ..settlement import SettlementEngine
from .registry import RelayerRegistry

logger = get_logger(__name__)

VoteKey = Tuple[str, SourceKey]


class AttestationAggregator:
    """Per-digest vote sets, equivocation detection and quorum triggering."""

    def __init__(
        self,
        registry: RelayerRegistry,
        finality_gate: FinalityGate,
        ledger: ProcessedEventLedger,
        settlement: SettlementEngine,
        clock: BlockClock,
        store=None,
        vote_expiry_blocks: Optional[int] = 1000,
        revoke_votes_on_removal: bool = False,
        max_amount: int = MAX_U128,
    ):
        self.registry = registry
        self.finality_gate = finality_gate
        self.ledger = ledger
        self.settlement = settlement
        self.clock = clock
        self.store = store
        self.vote_expiry_blocks = vote_expiry_blocks
        self.revoke_votes_on_removal = revoke_votes_on_removal
        self.max_amount = max_amount

        self.records: Dict[Hash, AttestationRecord] = {}
        self._votes_by_source: Dict[VoteKey, Hash] = {}
        self._equivocations: List[Equivocation] = []
        self._lock = threading.RLock()

        if revoke_votes_on_removal:
            registry.on_relayer_removed(self.revoke_votes)

    def _transaction(self):
        if self.store is None:
            return contextlib.nullcontext()
        return self.store.transaction()

    def submit_attestation(
        self, relayer_id: str, event: BridgeEvent, confirmations: int
    ) -> AttestationOutcome:
        """Record ``relayer_id``'s vote for ``event``.

        ``confirmations`` is the source-chain depth the relayer claims for
        the event's block.

        Raises:
            InvalidEvent: the event is malformed.
            NotAuthorizedRelayer: the relayer is unknown or disabled.
            InvalidQuorum: governance has not configured a threshold yet.
            NotYetFinal: the stated confirmations are below the minimum.
            ConflictingAttestation: the relayer already voted for another
                digest of the same source transaction.
        """
        validate_event(event, self.max_amount)

        with self._lock:
            if not self.registry.is_authorized(relayer_id):
                raise NotAuthorizedRelayer(relayer_id)

            quorum = self.registry.quorum()
            if not quorum.is_configured:
                raise InvalidQuorum(
                    "Quorum threshold has not been configured",
                    threshold=quorum.threshold,
                    enabled_count=quorum.relayer_count,
                )

            self.finality_gate.check(event, confirmations)

            if self.ledger.is_processed(event):
                logger.debug(
                    f"Ignoring attestation by {relayer_id} for processed "
                    f"{event.source_chain_id}:{event.source_tx_id}"
                )
                return AttestationOutcome.ALREADY_PROCESSED

            height = self.clock.current_height()
            self._evict_expired_locked(height)

            event_digest = digest(event)
            vote_key = (relayer_id, event.source_key)
            previous = self._votes_by_source.get(vote_key)

            if previous == event_digest:
                return AttestationOutcome.ALREADY_VOTED

            if previous is not None:
                self._record_equivocation_locked(relayer_id, event, previous, event_digest, height)

            record = self.records.get(event_digest)
            is_new = record is None
            if is_new:
                record = AttestationRecord(
                    digest=event_digest, event=event, first_seen_height=height
                )

            if self.store is not None:
                with self._transaction():
                    if is_new:
                        self.store.save_record(record)
                    self.store.save_vote(event_digest, relayer_id)

            if is_new:
                self.records[event_digest] = record
            record.voters.add(relayer_id)
            self._votes_by_source[vote_key] = event_digest

            logger.debug(
                f"Vote {record.vote_count}/{quorum.threshold} by {relayer_id} "
                f"for digest {event_digest.short()}",
                extra={"relayer_id": relayer_id, "digest": event_digest.to_hex()},
            )

            if record.vote_count >= quorum.threshold:
                return self._settle_locked(record)

            return AttestationOutcome.RECORDED

    def _record_equivocation_locked(
        self,
        relayer_id: str,
        event: BridgeEvent,
        first_digest: Hash,
        conflicting_digest: Hash,
        height: int,
    ) -> None:
        equivocation = Equivocation(
            relayer_id=relayer_id,
            source_chain_id=event.source_chain_id,
            source_tx_id=event.source_tx_id,
            first_digest=first_digest,
            conflicting_digest=conflicting_digest,
            height=height,
        )
        if self.store is not None:
            self.store.save_equivocation(equivocation)
        self._equivocations.append(equivocation)

        logger.warning(
            f"Relayer {relayer_id} equivocated on {event.source_chain_id}:{event.source_tx_id}",
            extra=equivocation.to_dict(),
        )
        raise ConflictingAttestation(equivocation)

    def _settle_locked(self, record: AttestationRecord) -> AttestationOutcome:
        event = record.event
        record.quorum_reached = True

        try:
            self.settlement.settle(event, record.digest)
        except AlreadyProcessed:
            self._clear_source_locked(event.source_key)
            return AttestationOutcome.ALREADY_PROCESSED
        except SettlementError as e:
            record.last_error = e.error_code
            if self.store is not None:
                self.store.save_record(record)
            return AttestationOutcome.SETTLEMENT_FAILED

        logger.info(
            f"Quorum reached for {event.source_chain_id}:{event.source_tx_id}",
            extra={"digest": record.digest.to_hex(), "votes": record.vote_count},
        )
        self._clear_source_locked(event.source_key)
        return AttestationOutcome.QUORUM_REACHED

    def _clear_source_locked(self, source_key: SourceKey) -> None:
        """Drop every vote set and vote index entry for a settled source transaction."""
        stale = [d for d, r in self.records.items() if r.event.source_key == source_key]
        self._drop_records_locked(stale)

    def _drop_records_locked(self, digests: List[Hash]) -> None:
        if not digests:
            return
        if self.store is not None:
            self.store.delete_records(digests)
        for event_digest in digests:
            record = self.records.pop(event_digest)
            for voter in record.voters:
                key = (voter, record.event.source_key)
                if self._votes_by_source.get(key) == event_digest:
                    del self._votes_by_source[key]
            self.settlement.discard_failure(event_digest)

    def _evict_expired_locked(self, height: int) -> List[Hash]:
        if self.vote_expiry_blocks is None:
            return []
        expired = [
            d
            for d, r in self.records.items()
            if not r.quorum_reached and height - r.first_seen_height >= self.vote_expiry_blocks
        ]
        if expired:
            self._drop_records_locked(expired)
            logger.info(
                f"Evicted {len(expired)} expired vote sets",
                extra={"height": height, "digests": [d.to_hex() for d in expired]},
            )
        return expired

    def evict_expired(self, height: Optional[int] = None) -> List[Hash]:
        """Evict pending vote sets first seen ``vote_expiry_blocks`` or more blocks ago."""
        with self._lock:
            return self._evict_expired_locked(
                self.clock.current_height() if height is None else height
            )

    def retry_settlement(self, event_digest: Hash) -> AttestationOutcome:
        """Re-attempt settlement of a quorum-complete event whose credit failed."""
        with self._lock:
            record = self.records.get(event_digest)
            if record is None:
                raise UnknownPendingEvent(event_digest.to_hex())

            if self.ledger.is_processed(record.event):
                self._clear_source_locked(record.event.source_key)
                return AttestationOutcome.ALREADY_PROCESSED

            quorum = self.registry.quorum()
            if not quorum.is_configured or record.vote_count < quorum.threshold:
                return AttestationOutcome.RECORDED

            return self._settle_locked(record)

    def settle_ready(self) -> List[SettlementReceipt]:
        """Settle every pending vote set that already meets the current threshold.

        Used after governance lowers the threshold. Vote sets are visited in
        digest order so the outcome does not depend on arrival order.
        """
        receipts = []
        with self._lock:
            quorum = self.registry.quorum()
            if not quorum.is_configured:
                return receipts
            for event_digest in sorted(self.records):
                record = self.records.get(event_digest)
                if record is None or record.vote_count < quorum.threshold:
                    continue
                if self._settle_locked(record) is AttestationOutcome.QUORUM_REACHED:
                    receipts.append(
                        self.ledger.get_receipt(*record.event.source_key)
                    )
        return receipts

    def revoke_votes(self, relayer_id: str) -> int:
        """Remove ``relayer_id``'s votes from every vote set that has not settled."""
        removed = 0
        with self._lock:
            for vote_key in [k for k in self._votes_by_source if k[0] == relayer_id]:
                event_digest = self._votes_by_source.pop(vote_key)
                record = self.records.get(event_digest)
                if record is None or relayer_id not in record.voters:
                    continue
                if self.store is not None:
                    self.store.delete_vote(event_digest, relayer_id)
                record.voters.discard(relayer_id)
                removed += 1

        if removed:
            logger.info(
                f"Revoked {removed} pending votes of relayer {relayer_id}",
                extra={"relayer_id": relayer_id},
            )
        return removed

    def get_record(self, event_digest: Hash) -> Optional[AttestationRecord]:
        with self._lock:
            return self.records.get(event_digest)

    def pending_records(self) -> List[AttestationRecord]:
        with self._lock:
            return list(self.records.values())

    def equivocations(self) -> List[Equivocation]:
        with self._lock:
            return list(self._equivocations)

    def has_voted(self, relayer_id: str, event: BridgeEvent) -> bool:
        with self._lock:
            return self._votes_by_source.get((relayer_id, event.source_key)) == digest(event)

    def restore(
        self,
        records: List[AttestationRecord],
        equivocations: List[Equivocation],
    ) -> None:
        """Load persisted vote sets, dropping any whose source already settled."""
        with self._lock:
            self.records = {}
            self._votes_by_source = {}
            self._equivocations = list(equivocations)

            settled = []
            for record in records:
                if self.ledger.is_processed(record.event):
                    settled.append(record.digest)
                self.records[record.digest] = record
                for voter in record.voters:
                    self._votes_by_source[(voter, record.event.source_key)] = record.digest

            self._drop_records_locked(settled)
