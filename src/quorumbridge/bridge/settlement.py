"""
Settlement engine.

Runs once an event digest reaches quorum: it re-checks the processed-event
ledger, credits the destination account through the balance collaborator
and records the source transaction as processed. The credit and the ledger
write succeed or fail together.
"""

import contextlib
import threading
from typing import Dict, Iterable, List, Optional

from ..crypto.hashing import Hash
from ..errors import SettlementError, StorageError
from ..logging import get_logger
from .assets import BalanceLedger
from .bridge_types import MAX_U128, BridgeEvent, SettlementFailure, SettlementReceipt
from .codec import validate_event
from .finality import BlockClock
from .ledger import ProcessedEventLedger

logger = get_logger(__name__)


class SettlementEngine:
    """Atomic credit-and-record for quorum-approved events."""

    def __init__(
        self,
        ledger: ProcessedEventLedger,
        balances: BalanceLedger,
        clock: BlockClock,
        store=None,
        max_amount: int = MAX_U128,
    ):
        self.ledger = ledger
        self.balances = balances
        self.clock = clock
        self.store = store
        self.max_amount = max_amount
        self.failures: Dict[Hash, SettlementFailure] = {}
        self._lock = threading.RLock()

    def _transaction(self):
        if self.store is None:
            return contextlib.nullcontext()
        return self.store.transaction()

    def settle(self, event: BridgeEvent, event_digest: Hash) -> SettlementReceipt:
        """Credit ``event`` and mark its source transaction processed.

        Raises:
            AlreadyProcessed: another digest for the same source transaction
                settled first.
            SettlementError: the balance collaborator refused the credit; no
                ledger entry is written and the event stays pending.
            StorageError: the database write failed. If this happens after
                the credit was applied, the source transaction is still
                marked processed in memory so it cannot be credited twice.
        """
        validate_event(event, self.max_amount)

        with self._lock:
            self.ledger.ensure_unprocessed(*event.source_key)

            receipt = SettlementReceipt(
                source_chain_id=event.source_chain_id,
                source_tx_id=event.source_tx_id,
                digest=event_digest,
                asset_id=event.asset_id,
                amount=event.amount,
                destination_account=event.destination_account,
                height=self.clock.current_height(),
            )

            credited = False
            try:
                with self._transaction():
                    self.ledger.persist(receipt)
                    if self.store is not None:
                        self.store.delete_failure(event_digest)
                    self.balances.credit(
                        event.destination_account, event.asset_id, event.amount
                    )
                    credited = True
            except SettlementError as e:
                self._record_failure(event, event_digest, e, receipt.height)
                raise
            except StorageError as e:
                if not credited:
                    raise
                self.ledger.commit(receipt)
                self.failures.pop(event_digest, None)
                logger.critical(
                    f"Credited {event.source_chain_id}:{event.source_tx_id} but could not "
                    f"persist it as processed: {e.message}",
                    exception=e,
                    extra=receipt.to_dict(),
                )
                raise

            self.ledger.commit(receipt)
            self.failures.pop(event_digest, None)

        logger.info(
            f"Settled {event.source_chain_id}:{event.source_tx_id}",
            extra=receipt.to_dict(),
        )
        return receipt

    def _record_failure(
        self, event: BridgeEvent, event_digest: Hash, error: SettlementError, height: int
    ) -> None:
        failure = SettlementFailure(
            digest=event_digest,
            source_chain_id=event.source_chain_id,
            source_tx_id=event.source_tx_id,
            error_code=error.error_code,
            message=error.message,
            height=height,
        )
        if self.store is not None:
            self.store.save_failure(failure)
        self.failures[event_digest] = failure
        logger.error(
            f"Settlement of {event.source_chain_id}:{event.source_tx_id} failed: {error.message}",
            exception=error,
            extra={"digest": event_digest.to_hex(), "error_code": error.error_code},
        )

    def get_failure(self, event_digest: Hash) -> Optional[SettlementFailure]:
        with self._lock:
            return self.failures.get(event_digest)

    def list_failures(self) -> List[SettlementFailure]:
        with self._lock:
            return list(self.failures.values())

    def discard_failure(self, event_digest: Hash) -> None:
        with self._lock:
            if self.failures.pop(event_digest, None) is not None and self.store is not None:
                self.store.delete_failure(event_digest)

    def restore(self, failures: Iterable[SettlementFailure]) -> None:
        """Load persisted settlement failures."""
        with self._lock:
            self.failures = {failure.digest: failure for failure in failures}
