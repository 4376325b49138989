"""Exception hierarchy for QuorumBridge.

This module defines the structured exceptions raised by the relayer
registry, the attestation aggregator, the finality gate and the settlement
engine. Every error carries a stable error code, a severity and a category
so that callers and governance tooling can react to it.
"""

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    GOVERNANCE = "governance"
    ATTESTATION = "attestation"
    SETTLEMENT = "settlement"
    STORAGE = "storage"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Context information for an error."""

    timestamp: float = field(default_factory=time.time)
    component: Optional[str] = None
    operation: Optional[str] = None
    relayer_id: Optional[str] = None
    digest: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "relayer_id": self.relayer_id,
            "digest": self.digest,
            "metadata": self.metadata,
        }


class QuorumBridgeError(Exception):
    """Base exception for all QuorumBridge errors."""

    default_code = "BRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.severity = severity
        self.category = category
        self.context = context or ErrorContext()
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.severity != ErrorSeverity.MEDIUM:
            parts.append(f"Severity: {self.severity.value}")

        if self.category != ErrorCategory.SYSTEM:
            parts.append(f"Category: {self.category.value}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ValidationError(QuorumBridgeError):
    """Validation error."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "value": str(self.value) if self.value is not None else None,
                "expected": str(self.expected) if self.expected is not None else None,
            }
        )
        return data


class InvalidEvent(ValidationError):
    """A bridge event is malformed and cannot be digested or settled."""

    default_code = "INVALID_EVENT"


class ConfigurationError(QuorumBridgeError):
    """Configuration error."""

    default_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)
        self.config_key = config_key


class InvalidQuorum(ConfigurationError):
    """Quorum threshold is zero, unset or above the enabled relayer count."""

    default_code = "INVALID_QUORUM"

    def __init__(
        self,
        message: str,
        threshold: Optional[int] = None,
        enabled_count: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, config_key="threshold", **kwargs)
        self.threshold = threshold
        self.enabled_count = enabled_count
        self.metadata.update({"threshold": threshold, "enabled_count": enabled_count})


class GovernanceError(QuorumBridgeError):
    """Governance error."""

    default_code = "GOVERNANCE_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.GOVERNANCE)
        super().__init__(message, **kwargs)


class BadOrigin(GovernanceError):
    """A privileged call was made by someone other than the governance authority."""

    default_code = "BAD_ORIGIN"

    def __init__(self, caller: str, **kwargs):
        super().__init__(
            f"Caller '{caller}' is not the governance authority",
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.caller = caller


class BridgeError(QuorumBridgeError):
    """Attestation and relayer errors."""

    default_code = "BRIDGE_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.ATTESTATION)
        super().__init__(message, **kwargs)


class NotAuthorizedRelayer(BridgeError):
    """The submitting relayer is unknown or disabled."""

    default_code = "NOT_AUTHORIZED_RELAYER"

    def __init__(self, relayer_id: str, **kwargs):
        super().__init__(f"Relayer '{relayer_id}' is not authorized", **kwargs)
        self.relayer_id = relayer_id


class AlreadyRegistered(BridgeError):
    """The relayer is already registered and enabled."""

    default_code = "ALREADY_REGISTERED"

    def __init__(self, relayer_id: str, kind: str = "Relayer", **kwargs):
        super().__init__(f"{kind} '{relayer_id}' is already registered", **kwargs)
        self.relayer_id = relayer_id


class NotRegistered(BridgeError):
    """The relayer is absent from the registry or already disabled."""

    default_code = "NOT_REGISTERED"

    def __init__(self, relayer_id: str, **kwargs):
        super().__init__(f"Relayer '{relayer_id}' is not registered", **kwargs)
        self.relayer_id = relayer_id


class NotYetFinal(BridgeError):
    """The event has fewer confirmations than the finality window requires."""

    default_code = "NOT_YET_FINAL"

    def __init__(self, confirmations: int, required: int, **kwargs):
        super().__init__(
            f"Event has {confirmations} confirmations, {required} required",
            retryable=True,
            **kwargs,
        )
        self.confirmations = confirmations
        self.required = required


class AlreadyProcessed(BridgeError):
    """The source transaction has already been settled."""

    default_code = "ALREADY_PROCESSED"

    def __init__(self, source_chain_id: str, source_tx_id: str, **kwargs):
        super().__init__(
            f"Source transaction {source_chain_id}:{source_tx_id} already processed",
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.source_chain_id = source_chain_id
        self.source_tx_id = source_tx_id


class ConflictingAttestation(BridgeError):
    """A relayer attested two different digests for the same source transaction."""

    default_code = "CONFLICTING_ATTESTATION"

    def __init__(self, equivocation: Any, **kwargs):
        super().__init__(
            f"Relayer '{equivocation.relayer_id}' equivocated on "
            f"{equivocation.source_chain_id}:{equivocation.source_tx_id}",
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.equivocation = equivocation


class BridgePaused(BridgeError):
    """The bridge is under an emergency pause."""

    default_code = "BRIDGE_PAUSED"

    def __init__(self, message: str = "Bridge is in emergency pause", **kwargs):
        super().__init__(message, retryable=True, **kwargs)


class UnknownPendingEvent(BridgeError):
    """No pending vote set exists for the requested digest."""

    default_code = "UNKNOWN_PENDING_EVENT"

    def __init__(self, digest: str, **kwargs):
        super().__init__(f"No pending attestation record for digest {digest}", **kwargs)
        self.digest = digest


class SettlementError(QuorumBridgeError):
    """Settlement-time error; aborts only the affected settlement."""

    default_code = "SETTLEMENT_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.SETTLEMENT)
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class InsufficientCapacity(SettlementError):
    """Crediting would overflow the balance or exceed the asset's max supply."""

    default_code = "INSUFFICIENT_CAPACITY"

    def __init__(self, asset_id: str, amount: int, **kwargs):
        super().__init__(
            f"Cannot credit {amount} of asset '{asset_id}': capacity exceeded", **kwargs
        )
        self.asset_id = asset_id
        self.amount = amount


class UnknownAsset(SettlementError):
    """The asset is not registered with the local ledger."""

    default_code = "UNKNOWN_ASSET"

    def __init__(self, asset_id: str, **kwargs):
        super().__init__(f"Unknown asset '{asset_id}'", **kwargs)
        self.asset_id = asset_id


class InsufficientBalance(SettlementError):
    """An outbound debit exceeds the account balance."""

    default_code = "INSUFFICIENT_BALANCE"

    def __init__(self, account: str, asset_id: str, amount: int, **kwargs):
        super().__init__(
            f"Account '{account}' cannot debit {amount} of asset '{asset_id}'",
            retryable=False,
            **kwargs,
        )
        self.account = account
        self.asset_id = asset_id
        self.amount = amount


class StorageError(QuorumBridgeError):
    """Persistence error."""

    default_code = "STORAGE_ERROR"

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.STORAGE)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.operation = operation


# Convenience functions for common error patterns
def create_validation_error(
    field: str, value: Any, expected: Any, message: Optional[str] = None
) -> InvalidEvent:
    """Create an invalid event error."""
    if message is None:
        message = f"Invalid value for field '{field}': expected {expected}, got {value}"

    return InvalidEvent(message=message, field=field, value=value, expected=expected)
