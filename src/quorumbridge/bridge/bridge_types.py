"""
Bridge types and data structures for QuorumBridge.

This module defines the events relayers attest to, the relayer and quorum
records kept by the registry, the per-digest vote sets, and the bridge
configuration.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from ..crypto.hashing import Hash
from ..errors import ConfigurationError

MAX_U128 = 2**128 - 1
MAX_U64 = 2**64 - 1

SourceKey = Tuple[str, str]


class AttestationOutcome(Enum):
    """Result of a single attestation submission."""

    RECORDED = "recorded"
    ALREADY_VOTED = "already_voted"
    QUORUM_REACHED = "quorum_reached"
    ALREADY_PROCESSED = "already_processed"
    SETTLEMENT_FAILED = "settlement_failed"


class SettlementStatus(Enum):
    """Settlement state of a source event."""

    SETTLED = "settled"
    PENDING = "pending"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BridgeEvent:
    """An event observed on the source chain (lock or burn of value)."""

    source_chain_id: str
    source_tx_id: str
    asset_id: str
    amount: int
    destination_account: str
    sequence_nonce: int

    @property
    def source_key(self) -> SourceKey:
        """Identity of the source transaction, used for exactly-once settlement."""
        return (self.source_chain_id, self.source_tx_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_chain_id": self.source_chain_id,
            "source_tx_id": self.source_tx_id,
            "asset_id": self.asset_id,
            "amount": self.amount,
            "destination_account": self.destination_account,
            "sequence_nonce": self.sequence_nonce,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeEvent":
        """Create from dictionary."""
        return cls(
            source_chain_id=data["source_chain_id"],
            source_tx_id=data["source_tx_id"],
            asset_id=data["asset_id"],
            amount=int(data["amount"]),
            destination_account=data["destination_account"],
            sequence_nonce=int(data["sequence_nonce"]),
        )


@dataclass
class RelayerIdentity:
    """A relayer known to the registry. Disabled relayers are kept for audit."""

    account_id: str
    enabled: bool = True
    registered_at: float = field(default_factory=time.time)
    disabled_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account_id": self.account_id,
            "enabled": self.enabled,
            "registered_at": self.registered_at,
            "disabled_at": self.disabled_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayerIdentity":
        """Create from dictionary."""
        return cls(
            account_id=data["account_id"],
            enabled=bool(data.get("enabled", True)),
            registered_at=data.get("registered_at", time.time()),
            disabled_at=data.get("disabled_at"),
        )


@dataclass(frozen=True)
class QuorumConfig:
    """Enabled relayer count N and required threshold M.

    A threshold of 0 means no quorum has been configured yet, which is
    only valid while the registry has no enabled relayers or before
    governance sets one.
    """

    relayer_count: int
    threshold: int

    @property
    def is_configured(self) -> bool:
        return self.threshold > 0

    def is_valid(self) -> bool:
        """Check 1 <= M <= N, or the unset state."""
        if self.threshold == 0:
            return True
        return 1 <= self.threshold <= self.relayer_count

    def to_dict(self) -> Dict[str, Any]:
        return {"relayer_count": self.relayer_count, "threshold": self.threshold}


@dataclass
class AttestationRecord:
    """Votes collected for one event digest."""

    digest: Hash
    event: BridgeEvent
    first_seen_height: int
    voters: Set[str] = field(default_factory=set)
    quorum_reached: bool = False
    last_error: Optional[str] = None

    @property
    def vote_count(self) -> int:
        return len(self.voters)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "digest": self.digest.to_hex(),
            "event": self.event.to_dict(),
            "first_seen_height": self.first_seen_height,
            "voters": sorted(self.voters),
            "quorum_reached": self.quorum_reached,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class Equivocation:
    """A relayer attested two different digests for one source transaction."""

    relayer_id: str
    source_chain_id: str
    source_tx_id: str
    first_digest: Hash
    conflicting_digest: Hash
    height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relayer_id": self.relayer_id,
            "source_chain_id": self.source_chain_id,
            "source_tx_id": self.source_tx_id,
            "first_digest": self.first_digest.to_hex(),
            "conflicting_digest": self.conflicting_digest.to_hex(),
            "height": self.height,
        }


@dataclass(frozen=True)
class SettlementReceipt:
    """Proof that a source event was credited locally."""

    source_chain_id: str
    source_tx_id: str
    digest: Hash
    asset_id: str
    amount: int
    destination_account: str
    height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_chain_id": self.source_chain_id,
            "source_tx_id": self.source_tx_id,
            "digest": self.digest.to_hex(),
            "asset_id": self.asset_id,
            "amount": self.amount,
            "destination_account": self.destination_account,
            "height": self.height,
        }


@dataclass(frozen=True)
class SettlementFailure:
    """A settlement attempt that was aborted by the asset ledger."""

    digest: Hash
    source_chain_id: str
    source_tx_id: str
    error_code: str
    message: str
    height: int


@dataclass
class BridgeConfig:
    """Configuration for the relayer bridge."""

    governance_account: str = "governance"
    min_confirmations: int = 12
    chain_confirmations: Dict[str, int] = field(default_factory=dict)
    vote_expiry_blocks: Optional[int] = 1000
    revoke_votes_on_removal: bool = False
    max_amount: int = MAX_U128
    database_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "governance_account": self.governance_account,
            "min_confirmations": self.min_confirmations,
            "chain_confirmations": dict(self.chain_confirmations),
            "vote_expiry_blocks": self.vote_expiry_blocks,
            "revoke_votes_on_removal": self.revoke_votes_on_removal,
            "max_amount": self.max_amount,
            "database_path": self.database_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create from dictionary."""
        return cls(
            governance_account=data.get("governance_account", "governance"),
            min_confirmations=data.get("min_confirmations", 12),
            chain_confirmations=dict(data.get("chain_confirmations", {})),
            vote_expiry_blocks=data.get("vote_expiry_blocks", 1000),
            revoke_votes_on_removal=data.get("revoke_votes_on_removal", False),
            max_amount=data.get("max_amount", MAX_U128),
            database_path=data.get("database_path"),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for settings the bridge cannot run with."""
        if not self.governance_account:
            raise ConfigurationError(
                "governance_account must be set", config_key="governance_account"
            )
        if self.min_confirmations < 0:
            raise ConfigurationError(
                "min_confirmations cannot be negative", config_key="min_confirmations"
            )
        for chain_id, depth in self.chain_confirmations.items():
            if depth < 0:
                raise ConfigurationError(
                    f"confirmation depth for chain '{chain_id}' cannot be negative",
                    config_key="chain_confirmations",
                )
        if self.vote_expiry_blocks is not None and self.vote_expiry_blocks <= 0:
            raise ConfigurationError(
                "vote_expiry_blocks must be positive or None",
                config_key="vote_expiry_blocks",
            )
        if not 0 < self.max_amount <= MAX_U128:
            raise ConfigurationError(
                "max_amount must fit the 128-bit amount encoding",
                config_key="max_amount",
            )
