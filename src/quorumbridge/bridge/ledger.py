"""
Processed-event ledger.

Append-only record of settled source transactions. It is the single source
of truth for exactly-once settlement: a ``(source_chain_id, source_tx_id)``
pair enters it once and is never removed or reused.
"""

import threading
from typing import Dict, Iterable, List, Optional

from ..errors import AlreadyProcessed
from .bridge_types import BridgeEvent, SettlementReceipt, SourceKey


class ProcessedEventLedger:
    """Set of settled source transactions with their receipts."""

    def __init__(self, store=None):
        self.store = store
        self._receipts: Dict[SourceKey, SettlementReceipt] = {}
        self._lock = threading.RLock()

    def contains(self, source_chain_id: str, source_tx_id: str) -> bool:
        with self._lock:
            return (source_chain_id, source_tx_id) in self._receipts

    def is_processed(self, event: BridgeEvent) -> bool:
        return self.contains(*event.source_key)

    def ensure_unprocessed(self, source_chain_id: str, source_tx_id: str) -> None:
        if self.contains(source_chain_id, source_tx_id):
            raise AlreadyProcessed(source_chain_id, source_tx_id)

    def persist(self, receipt: SettlementReceipt) -> None:
        """Write the receipt to durable storage inside the caller's transaction."""
        self.ensure_unprocessed(receipt.source_chain_id, receipt.source_tx_id)
        if self.store is not None:
            self.store.mark_processed(receipt)

    def commit(self, receipt: SettlementReceipt) -> None:
        """Make a persisted receipt visible in memory."""
        key = (receipt.source_chain_id, receipt.source_tx_id)
        with self._lock:
            if key in self._receipts:
                raise AlreadyProcessed(*key)
            self._receipts[key] = receipt

    def get_receipt(self, source_chain_id: str, source_tx_id: str) -> Optional[SettlementReceipt]:
        with self._lock:
            return self._receipts.get((source_chain_id, source_tx_id))

    def receipts(self) -> List[SettlementReceipt]:
        with self._lock:
            return list(self._receipts.values())

    def restore(self, receipts: Iterable[SettlementReceipt]) -> None:
        with self._lock:
            for receipt in receipts:
                self._receipts[(receipt.source_chain_id, receipt.source_tx_id)] = receipt

    def __len__(self) -> int:
        with self._lock:
            return len(self._receipts)

    def __contains__(self, key: SourceKey) -> bool:
        return self.contains(*key)
