"""
Bridge Relayer Network Module

This module provides the federated relayer set for bridge operations including:
- Relayer registration and the quorum threshold
- Attestation aggregation keyed by event digest
- Equivocation detection
- Vote-set expiry
"""

from .aggregator import AttestationAggregator
from .registry import RelayerRegistry

__all__ = [
    "AttestationAggregator",
    "RelayerRegistry",
]
