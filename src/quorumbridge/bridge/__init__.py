"""
Cross-Chain Bridge Core for QuorumBridge.

This module lets a federated set of relayers jointly attest to events on an
external chain and settle them exactly once on the local ledger:
- Canonical event digesting
- Governance-controlled relayer registry and quorum
- Attestation aggregation with equivocation detection
- Finality gating against source-chain reorganizations
- Atomic settlement backed by a processed-event ledger
"""

from .bridge_types import (
    MAX_U64,
    MAX_U128,
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
from .codec import DOMAIN_TAG, digest, encode_event, validate_event
from .finality import BlockClock, FinalityGate
from .ledger import ProcessedEventLedger
from .assets import AssetClass, AssetLedger, BalanceLedger
from .settlement import SettlementEngine
from .validators import AttestationAggregator, RelayerRegistry
from .bridge_store import BridgeStore, PersistedState
from .bridge_manager import BridgeManager, EmergencyPause

__all__ = [
    # Types
    "MAX_U64",
    "MAX_U128",
    "AttestationOutcome",
    "AttestationRecord",
    "BridgeConfig",
    "BridgeEvent",
    "Equivocation",
    "QuorumConfig",
    "RelayerIdentity",
    "SettlementFailure",
    "SettlementReceipt",
    "SettlementStatus",
    # Codec
    "DOMAIN_TAG",
    "digest",
    "encode_event",
    "validate_event",
    # Finality
    "BlockClock",
    "FinalityGate",
    # Ledgers
    "ProcessedEventLedger",
    "AssetClass",
    "AssetLedger",
    "BalanceLedger",
    # Settlement
    "SettlementEngine",
    # Relayers
    "AttestationAggregator",
    "RelayerRegistry",
    # Persistence
    "BridgeStore",
    "PersistedState",
    # Management
    "BridgeManager",
    "EmergencyPause",
]
