"""
QuorumBridge: relayer-quorum cross-chain bridge core.

Subpackages:
- bridge: event digests, relayer registry, attestation aggregation,
  finality gating and exactly-once settlement
- crypto: hash values and SHA3-256 hashing
- errors: exception hierarchy
- logging: structured logging
- storage: SQLite persistence
"""

__version__ = "0.1.0"
