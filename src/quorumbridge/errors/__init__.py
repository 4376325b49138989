"""QuorumBridge Error Handling System.

This module provides the exception hierarchy shared by the relayer
registry, attestation aggregation, finality checks, settlement and
persistence layers.
"""

from .exceptions import (
    AlreadyProcessed,
    AlreadyRegistered,
    BadOrigin,
    BridgeError,
    BridgePaused,
    ConfigurationError,
    ConflictingAttestation,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    GovernanceError,
    InsufficientBalance,
    InsufficientCapacity,
    InvalidEvent,
    InvalidQuorum,
    NotAuthorizedRelayer,
    NotRegistered,
    NotYetFinal,
    QuorumBridgeError,
    SettlementError,
    StorageError,
    UnknownAsset,
    UnknownPendingEvent,
    ValidationError,
    create_validation_error,
)

__all__ = [
    # Base
    "QuorumBridgeError",
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    # Validation / configuration
    "ValidationError",
    "InvalidEvent",
    "ConfigurationError",
    "InvalidQuorum",
    # Governance
    "GovernanceError",
    "BadOrigin",
    # Attestation
    "BridgeError",
    "NotAuthorizedRelayer",
    "AlreadyRegistered",
    "NotRegistered",
    "NotYetFinal",
    "AlreadyProcessed",
    "ConflictingAttestation",
    "BridgePaused",
    "UnknownPendingEvent",
    # Settlement
    "SettlementError",
    "InsufficientCapacity",
    "UnknownAsset",
    "InsufficientBalance",
    # Storage
    "StorageError",
    "create_validation_error",
]
