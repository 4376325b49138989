"""
Bridge management for QuorumBridge.

``BridgeManager`` wires the relayer registry, finality gate, attestation
aggregator, settlement engine and processed-event ledger together, exposes
the governance and relayer entry points, and restores durable state when a
database path is configured.
"""

import threading
import time
from typing import Any, Dict, List, Optional

from ..crypto.hashing import Hash
from ..errors import BadOrigin, BridgePaused
from ..logging import get_logger
from ..storage.database import DatabaseConfig
from .assets import AssetLedger, BalanceLedger
from .bridge_store import BridgeStore
from .bridge_types import (
    AttestationOutcome,
    AttestationRecord,
    BridgeConfig,
    BridgeEvent,
    Equivocation,
    QuorumConfig,
    RelayerIdentity,
    SettlementFailure,
    SettlementReceipt,
    SettlementStatus,
)
from .codec import digest
from .finality import BlockClock, FinalityGate
from .ledger import ProcessedEventLedger
from .settlement import SettlementEngine
from .validators.aggregator import AttestationAggregator
from .validators.registry import RelayerRegistry

logger = get_logger(__name__)


class EmergencyPause:
    """Governance-controlled switch that halts attestation and settlement."""

    def __init__(self, governance_account: str, store: Optional[BridgeStore] = None):
        self.governance_account = governance_account
        self.store = store
        self.paused = False
        self.reason: Optional[str] = None
        self.paused_at: Optional[float] = None
        self._lock = threading.Lock()

    def pause(self, caller: str, reason: str) -> None:
        if caller != self.governance_account:
            raise BadOrigin(caller)
        with self._lock:
            if self.store is not None:
                self.store.save_paused(True)
            self.paused = True
            self.reason = reason
            self.paused_at = time.time()
        logger.critical(f"EMERGENCY PAUSE ACTIVATED: {reason}", extra={"caller": caller})

    def resume(self, caller: str) -> None:
        if caller != self.governance_account:
            raise BadOrigin(caller)
        with self._lock:
            if self.store is not None:
                self.store.save_paused(False)
            self.paused = False
            self.reason = None
            self.paused_at = None
        logger.info("Emergency pause lifted", extra={"caller": caller})

    def is_paused(self) -> bool:
        with self._lock:
            return self.paused

    def ensure_active(self) -> None:
        with self._lock:
            if self.paused:
                if self.reason:
                    raise BridgePaused(f"Bridge is in emergency pause: {self.reason}")
                raise BridgePaused()


class BridgeManager:
    """Main bridge implementation."""

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        balances: Optional[BalanceLedger] = None,
        clock: Optional[BlockClock] = None,
    ):
        self.config = config or BridgeConfig()
        self.config.validate()

        self.clock = clock or BlockClock()
        self.balances = balances or AssetLedger(governance_account=self.config.governance_account)

        self.store: Optional[BridgeStore] = None
        if self.config.database_path:
            self.store = BridgeStore(DatabaseConfig(database_path=self.config.database_path)).open()

        self.registry = RelayerRegistry(self.config.governance_account, store=self.store)
        self.finality_gate = FinalityGate(
            min_confirmations=self.config.min_confirmations,
            chain_confirmations=self.config.chain_confirmations,
        )
        self.ledger = ProcessedEventLedger(store=self.store)
        self.settlement = SettlementEngine(
            ledger=self.ledger,
            balances=self.balances,
            clock=self.clock,
            store=self.store,
            max_amount=self.config.max_amount,
        )
        self.aggregator = AttestationAggregator(
            registry=self.registry,
            finality_gate=self.finality_gate,
            ledger=self.ledger,
            settlement=self.settlement,
            clock=self.clock,
            store=self.store,
            vote_expiry_blocks=self.config.vote_expiry_blocks,
            revoke_votes_on_removal=self.config.revoke_votes_on_removal,
            max_amount=self.config.max_amount,
        )
        self.emergency = EmergencyPause(self.config.governance_account, store=self.store)

        # One submission or governance change at a time.
        self._lock = threading.RLock()

        if self.store is not None:
            self._restore()

    def _restore(self) -> None:
        state = self.store.load_state()
        self.registry.restore(state.relayers, state.threshold)
        self.ledger.restore(state.receipts)
        self.settlement.restore(state.failures)
        self.aggregator.restore(state.records, state.equivocations)
        self.emergency.paused = state.paused

        heights = [r.first_seen_height for r in state.records]
        heights.extend(r.height for r in state.receipts)
        if heights and max(heights) > self.clock.current_height():
            self.clock.set_height(max(heights))
        logger.info(
            "Bridge state restored",
            extra={
                "relayers": len(state.relayers),
                "threshold": state.threshold,
                "pending": len(state.records),
                "processed": len(state.receipts),
                "failed": len(state.failures),
            },
        )

    def close(self) -> None:
        """Release the database connection, if any."""
        if self.store is not None:
            self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Governance

    def add_relayer(self, caller: str, relayer_id: str) -> RelayerIdentity:
        with self._lock:
            return self.registry.add_relayer(caller, relayer_id)

    def remove_relayer(
        self, caller: str, relayer_id: str, new_threshold: Optional[int] = None
    ) -> RelayerIdentity:
        with self._lock:
            identity = self.registry.remove_relayer(caller, relayer_id, new_threshold)
            if new_threshold is not None:
                self._settle_ready()
            return identity

    def set_quorum(self, caller: str, threshold: int) -> QuorumConfig:
        with self._lock:
            config = self.registry.set_quorum(caller, threshold)
            self._settle_ready()
            return config

    def pause(self, caller: str, reason: str) -> None:
        with self._lock:
            self.emergency.pause(caller, reason)

    def resume(self, caller: str) -> None:
        with self._lock:
            self.emergency.resume(caller)
            self._settle_ready()

    def _settle_ready(self) -> List[SettlementReceipt]:
        if self.emergency.is_paused():
            return []
        return self.aggregator.settle_ready()

    # Relayers

    def submit_attestation(
        self, relayer_id: str, event: BridgeEvent, confirmations: int
    ) -> AttestationOutcome:
        """Submit one relayer's attestation of ``event``."""
        with self._lock:
            self.emergency.ensure_active()
            return self.aggregator.submit_attestation(relayer_id, event, confirmations)

    def retry_settlement(self, event_digest: Hash) -> AttestationOutcome:
        """Re-attempt a settlement that failed at the asset ledger."""
        with self._lock:
            self.emergency.ensure_active()
            return self.aggregator.retry_settlement(event_digest)

    # Time

    def advance_blocks(self, blocks: int = 1) -> int:
        """Advance the local clock and evict expired vote sets."""
        with self._lock:
            height = self.clock.advance(blocks)
            self.aggregator.evict_expired(height)
            return height

    def evict_expired(self) -> List[Hash]:
        with self._lock:
            return self.aggregator.evict_expired()

    # Queries

    @staticmethod
    def digest(event: BridgeEvent) -> Hash:
        return digest(event)

    def is_settled(self, event: BridgeEvent) -> bool:
        return self.ledger.is_processed(event)

    def settlement_status(self, event: BridgeEvent) -> SettlementStatus:
        if self.ledger.is_processed(event):
            return SettlementStatus.SETTLED
        record = self.aggregator.get_record(digest(event))
        if record is None:
            return SettlementStatus.UNKNOWN
        if record.last_error is not None:
            return SettlementStatus.FAILED
        return SettlementStatus.PENDING

    def get_record(self, event: BridgeEvent) -> Optional[AttestationRecord]:
        return self.aggregator.get_record(digest(event))

    def get_receipt(self, source_chain_id: str, source_tx_id: str) -> Optional[SettlementReceipt]:
        return self.ledger.get_receipt(source_chain_id, source_tx_id)

    def equivocations(self) -> List[Equivocation]:
        return self.aggregator.equivocations()

    def settlement_failures(self) -> List[SettlementFailure]:
        return self.settlement.list_failures()

    def get_bridge_stats(self) -> Dict[str, Any]:
        """Get bridge statistics."""
        quorum = self.registry.quorum()
        pending = self.aggregator.pending_records()
        return {
            "registered_relayers": len(self.registry.relayers),
            "enabled_relayers": quorum.relayer_count,
            "threshold": quorum.threshold,
            "pending_records": len(pending),
            "failed_settlements": len(self.settlement.list_failures()),
            "processed_events": len(self.ledger),
            "equivocations": len(self.aggregator.equivocations()),
            "height": self.clock.current_height(),
            "paused": self.emergency.is_paused(),
            "persistent": self.store is not None,
        }
