"""
Canonical event encoding and digesting.

An event is encoded field by field in a fixed order. Text fields are
UTF-8 with a 4-byte big-endian length prefix, the amount is a 16-byte
big-endian unsigned integer and the sequence nonce an 8-byte one, so no
two distinct field tuples share an encoding. The digest is SHA3-256 over
a domain tag followed by that encoding.
"""

from typing import List

from ..crypto.hashing import Hash, SHA3Hasher
from ..errors import InvalidEvent, create_validation_error
from .bridge_types import MAX_U64, MAX_U128, BridgeEvent

DOMAIN_TAG = b"quorumbridge.event.v1"
AMOUNT_WIDTH = 16
NONCE_WIDTH = 8
LENGTH_PREFIX_WIDTH = 4
_MAX_TEXT_BYTES = 2 ** (8 * LENGTH_PREFIX_WIDTH) - 1


def _encode_text(field: str, value: str) -> bytes:
    if not isinstance(value, str):
        raise create_validation_error(field, type(value).__name__, "str")
    try:
        raw = value.encode("utf-8")
    except UnicodeEncodeError:
        raise create_validation_error(field, repr(value), "valid UTF-8 text")
    if len(raw) > _MAX_TEXT_BYTES:
        raise create_validation_error(field, f"{len(raw)} bytes", "length prefix range")
    return len(raw).to_bytes(LENGTH_PREFIX_WIDTH, "big") + raw


def _encode_uint(field: str, value: int, width: int, maximum: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise create_validation_error(field, type(value).__name__, "int")
    if not 0 <= value <= maximum:
        raise create_validation_error(field, value, f"0..{maximum}")
    return value.to_bytes(width, "big")


def encode_event(event: BridgeEvent) -> bytes:
    """Return the canonical byte encoding of ``event``."""
    parts: List[bytes] = [
        _encode_text("source_chain_id", event.source_chain_id),
        _encode_text("source_tx_id", event.source_tx_id),
        _encode_text("asset_id", event.asset_id),
        _encode_uint("amount", event.amount, AMOUNT_WIDTH, MAX_U128),
        _encode_text("destination_account", event.destination_account),
        _encode_uint("sequence_nonce", event.sequence_nonce, NONCE_WIDTH, MAX_U64),
    ]
    return b"".join(parts)


def digest(event: BridgeEvent) -> Hash:
    """Compute the canonical digest relayers sign and votes are keyed by."""
    return SHA3Hasher.hash(DOMAIN_TAG + encode_event(event))


def validate_event(event: BridgeEvent, max_amount: int = MAX_U128) -> None:
    """Reject malformed events before they are digested or settled.

    Raises:
        InvalidEvent: an identifier or the recipient is empty, the amount is
            zero or above ``max_amount``, or a field cannot be encoded.
    """
    if not isinstance(event, BridgeEvent):
        raise InvalidEvent(
            "Attestation payload is not a BridgeEvent",
            field="event",
            value=type(event).__name__,
            expected="BridgeEvent",
        )

    for name in ("source_chain_id", "source_tx_id", "asset_id", "destination_account"):
        value = getattr(event, name)
        if not isinstance(value, str) or not value.strip():
            raise create_validation_error(name, value, "non-empty string")

    if isinstance(event.amount, bool) or not isinstance(event.amount, int):
        raise create_validation_error("amount", event.amount, "int")
    if event.amount <= 0:
        raise create_validation_error("amount", event.amount, "non-zero amount")
    if event.amount > max_amount:
        raise create_validation_error("amount", event.amount, f"at most {max_amount}")

    # Surfaces any remaining width violation (e.g. nonce) as InvalidEvent.
    encode_event(event)
