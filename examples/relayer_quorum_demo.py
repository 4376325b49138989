#!/usr/bin/env python3
"""
Relayer Quorum Bridge Demo for QuorumBridge

This demo walks through the relayer-quorum bridge:
- Governance registers relayers and sets a 2-of-3 quorum
- Relayers attest to a source-chain lock event
- The event settles exactly once when quorum is reached
- An equivocating relayer is flagged
- A failed settlement is retried after governance fixes the asset

Run this demo to watch the bridge log each state transition.
"""

from quorumbridge.bridge import (
    AttestationOutcome,
    BridgeConfig,
    BridgeEvent,
    BridgeManager,
)
from quorumbridge.errors import ConflictingAttestation, NotYetFinal
from quorumbridge.logging import LogConfig, LogLevel, get_logger, setup_logging

logger = get_logger("quorumbridge.demo")

GOV = "governance"


class RelayerQuorumDemo:
    """Demonstrates quorum attestation and settlement."""

    def __init__(self):
        self.bridge = BridgeManager(
            BridgeConfig(governance_account=GOV, min_confirmations=12, vote_expiry_blocks=1000)
        )

    def setup(self) -> None:
        logger.info("Setting up relayer set and assets")
        self.bridge.balances.create_asset(GOV, "USDC", symbol="USDC", decimals=6)
        for relayer_id in ("relayer-1", "relayer-2", "relayer-3"):
            self.bridge.add_relayer(GOV, relayer_id)
        self.bridge.set_quorum(GOV, 2)

    def demonstrate_settlement(self) -> None:
        event = BridgeEvent("ethereum", "0xfeed", "USDC", 100, "alice", 1)
        logger.info(f"Event digest: {self.bridge.digest(event).to_hex()}")

        try:
            self.bridge.submit_attestation("relayer-1", event, 3)
        except NotYetFinal as e:
            logger.info(f"Rejected early attestation: {e.message}")

        for relayer_id in ("relayer-1", "relayer-2", "relayer-3"):
            outcome = self.bridge.submit_attestation(relayer_id, event, 12)
            logger.info(f"{relayer_id}: {outcome.value}")

        logger.info(f"alice balance: {self.bridge.balances.balance_of('alice', 'USDC')}")

    def demonstrate_equivocation(self) -> None:
        honest = BridgeEvent("ethereum", "0xbeef", "USDC", 5, "bob", 2)
        forged = BridgeEvent("ethereum", "0xbeef", "USDC", 5_000, "mallory", 2)

        self.bridge.submit_attestation("relayer-3", honest, 12)
        try:
            self.bridge.submit_attestation("relayer-3", forged, 12)
        except ConflictingAttestation as e:
            logger.warning(f"Flagged: {e.message}", extra=e.equivocation.to_dict())

    def demonstrate_retry(self) -> None:
        event = BridgeEvent("ethereum", "0xcafe", "DAI", 7, "carol", 3)
        self.bridge.submit_attestation("relayer-1", event, 12)
        outcome = self.bridge.submit_attestation("relayer-2", event, 12)
        logger.info(f"Settlement with unknown asset: {outcome.value}")

        self.bridge.balances.create_asset(GOV, "DAI")
        outcome = self.bridge.retry_settlement(self.bridge.digest(event))
        if outcome is AttestationOutcome.QUORUM_REACHED:
            logger.info(f"carol balance: {self.bridge.balances.balance_of('carol', 'DAI')}")

    def run_demo(self) -> None:
        self.setup()
        self.demonstrate_settlement()
        self.demonstrate_equivocation()
        self.demonstrate_retry()
        logger.info("Bridge stats", extra=self.bridge.get_bridge_stats())
        self.bridge.close()


def main():
    setup_logging(LogConfig(level=LogLevel.INFO, format_type="text"))
    RelayerQuorumDemo().run_demo()


if __name__ == "__main__":
    main()
