"""
Finality gate and local block clock.

The bridge does not observe source chains itself. Relayers state how many
confirmations the event's source block has, and the gate compares that
claim with the configured depth for the source chain.
"""

import threading
from typing import Dict, Optional

from ..errors import NotYetFinal, ValidationError
from ..logging import get_logger
from .bridge_types import BridgeEvent

logger = get_logger(__name__)


class BlockClock:
    """Monotonic local block height, driven by the host ledger."""

    def __init__(self, height: int = 0):
        if height < 0:
            raise ValidationError("Block height cannot be negative", field="height", value=height)
        self._height = height
        self._lock = threading.Lock()

    def current_height(self) -> int:
        with self._lock:
            return self._height

    def advance(self, blocks: int = 1) -> int:
        """Move the clock forward and return the new height."""
        if blocks < 0:
            raise ValidationError("Cannot advance by a negative block count", field="blocks", value=blocks)
        with self._lock:
            self._height += blocks
            return self._height

    def set_height(self, height: int) -> None:
        with self._lock:
            if height < self._height:
                raise ValidationError(
                    "Block height cannot move backwards",
                    field="height",
                    value=height,
                    expected=f">= {self._height}",
                )
            self._height = height


class FinalityGate:
    """Minimum confirmation depth an event needs before it can be attested."""

    def __init__(self, min_confirmations: int = 12, chain_confirmations: Optional[Dict[str, int]] = None):
        self.min_confirmations = min_confirmations
        self.chain_confirmations = dict(chain_confirmations or {})

    def required_confirmations(self, source_chain_id: str) -> int:
        return self.chain_confirmations.get(source_chain_id, self.min_confirmations)

    def is_final(self, event: BridgeEvent, confirmations: int) -> bool:
        """True once the stated confirmation depth meets the chain's minimum."""
        return confirmations >= self.required_confirmations(event.source_chain_id)

    def check(self, event: BridgeEvent, confirmations: int) -> None:
        """Raise NotYetFinal when the event is still inside the reorg window."""
        if isinstance(confirmations, bool) or not isinstance(confirmations, int) or confirmations < 0:
            raise ValidationError(
                "Confirmations must be a non-negative integer",
                field="confirmations",
                value=confirmations,
                expected="int >= 0",
            )

        if not self.is_final(event, confirmations):
            required = self.required_confirmations(event.source_chain_id)
            logger.debug(
                f"Event {event.source_chain_id}:{event.source_tx_id} not final",
                extra={"confirmations": confirmations, "required": required},
            )
            raise NotYetFinal(confirmations, required)
