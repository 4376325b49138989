"""
Hash functions for QuorumBridge.

Event digests are SHA3-256 over a canonical byte encoding, computed with
the ``cryptography`` hash primitives.
"""

from dataclasses import dataclass
from typing import Union

from cryptography.hazmat.primitives import hashes

DIGEST_SIZE = 32


@dataclass(frozen=True, order=True)
class Hash:
    """Immutable 32-byte hash value with comparison and string representation."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, (bytes, bytearray)):
            raise TypeError("Hash value must be bytes")
        if len(self.value) != DIGEST_SIZE:
            raise ValueError(f"Hash must be exactly {DIGEST_SIZE} bytes")
        object.__setattr__(self, "value", bytes(self.value))

    def __str__(self) -> str:
        return self.value.hex()

    def __repr__(self) -> str:
        return f"Hash('{self.value.hex()}')"

    @classmethod
    def from_hex(cls, hex_string: str) -> "Hash":
        """Create a Hash from a hexadecimal string."""
        if hex_string.startswith("0x"):
            hex_string = hex_string[2:]
        return cls(bytes.fromhex(hex_string))

    @classmethod
    def zero(cls) -> "Hash":
        """Create a zero hash (all zeros)."""
        return cls(b"\x00" * DIGEST_SIZE)

    def to_hex(self) -> str:
        """Convert hash to hexadecimal string."""
        return self.value.hex()

    def short(self) -> str:
        """First eight hex characters, for log lines."""
        return self.value.hex()[:8]


class SHA3Hasher:
    """SHA3-256 hasher backed by the ``cryptography`` package."""

    @staticmethod
    def hash(data: Union[bytes, str]) -> Hash:
        """
        Hash data using SHA3-256.

        Args:
            data: Data to hash (bytes or string)

        Returns:
            Hash object containing the SHA3-256 digest
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        hasher = hashes.Hash(hashes.SHA3_256())
        hasher.update(data)
        return Hash(hasher.finalize())
