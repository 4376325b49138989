"""
Cryptographic primitives for QuorumBridge.
"""

from .hashing import DIGEST_SIZE, SHA3Hasher, Hash

__all__ = ["DIGEST_SIZE", "Hash", "SHA3Hasher"]
