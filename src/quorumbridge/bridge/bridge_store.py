"""Durable bridge state.

Maps registry entries, the quorum threshold, pending vote sets,
equivocations, settlement failures and processed events to the SQLite schema, and loads them
back when a bridge restarts.
"""

import json
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Iterable, List

from ..crypto.hashing import Hash
from ..errors import AlreadyProcessed, StorageError
from ..storage.database import DatabaseConfig, SQLiteBackend
from .bridge_types import (
    AttestationRecord,
    BridgeEvent,
    Equivocation,
    RelayerIdentity,
    SettlementFailure,
    SettlementReceipt,
)

THRESHOLD_KEY = "quorum_threshold"
PAUSED_KEY = "paused"


@dataclass
class PersistedState:
    """Everything needed to rebuild a bridge after a restart."""

    relayers: List[RelayerIdentity] = field(default_factory=list)
    threshold: int = 0
    records: List[AttestationRecord] = field(default_factory=list)
    equivocations: List[Equivocation] = field(default_factory=list)
    receipts: List[SettlementReceipt] = field(default_factory=list)
    failures: List[SettlementFailure] = field(default_factory=list)
    paused: bool = False


class BridgeStore:
    """Bridge persistence on top of the SQLite backend."""

    def __init__(self, config: DatabaseConfig):
        self.backend = SQLiteBackend(config)

    def open(self) -> "BridgeStore":
        self.backend.connect()
        return self

    def close(self) -> None:
        self.backend.disconnect()

    def transaction(self):
        return self.backend.transaction()

    def save_relayer(self, identity: RelayerIdentity) -> None:
        self.backend.execute(
            """
            INSERT INTO relayers (account_id, enabled, registered_at, disabled_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                enabled = excluded.enabled,
                disabled_at = excluded.disabled_at
            """,
            (
                identity.account_id,
                int(identity.enabled),
                identity.registered_at,
                identity.disabled_at,
            ),
        )

    def save_threshold(self, threshold: int) -> None:
        self.backend.execute(
            "INSERT OR REPLACE INTO bridge_settings (key, value) VALUES (?, ?)",
            (THRESHOLD_KEY, str(threshold)),
        )

    def save_paused(self, paused: bool) -> None:
        self.backend.execute(
            "INSERT OR REPLACE INTO bridge_settings (key, value) VALUES (?, ?)",
            (PAUSED_KEY, "1" if paused else "0"),
        )

    def save_record(self, record: AttestationRecord) -> None:
        """Insert or update a vote set header; votes are stored separately."""
        self.backend.execute(
            """
            INSERT INTO attestation_records
                (digest, event, source_chain_id, source_tx_id,
                 first_seen_height, quorum_reached, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(digest) DO UPDATE SET
                quorum_reached = excluded.quorum_reached,
                last_error = excluded.last_error
            """,
            (
                record.digest.to_hex(),
                json.dumps(record.event.to_dict(), sort_keys=True),
                record.event.source_chain_id,
                record.event.source_tx_id,
                record.first_seen_height,
                int(record.quorum_reached),
                record.last_error,
            ),
        )

    def save_vote(self, digest: Hash, relayer_id: str) -> None:
        self.backend.execute(
            "INSERT OR IGNORE INTO attestation_votes (digest, relayer_id) VALUES (?, ?)",
            (digest.to_hex(), relayer_id),
        )

    def delete_vote(self, digest: Hash, relayer_id: str) -> None:
        self.backend.execute(
            "DELETE FROM attestation_votes WHERE digest = ? AND relayer_id = ?",
            (digest.to_hex(), relayer_id),
        )

    def delete_records(self, digests: Iterable[Hash]) -> None:
        with self.transaction():
            for digest in digests:
                self.backend.execute(
                    "DELETE FROM attestation_records WHERE digest = ?", (digest.to_hex(),)
                )

    def save_equivocation(self, equivocation: Equivocation) -> None:
        self.backend.execute(
            """
            INSERT INTO equivocations
                (relayer_id, source_chain_id, source_tx_id,
                 first_digest, conflicting_digest, height)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                equivocation.relayer_id,
                equivocation.source_chain_id,
                equivocation.source_tx_id,
                equivocation.first_digest.to_hex(),
                equivocation.conflicting_digest.to_hex(),
                equivocation.height,
            ),
        )

    def mark_processed(self, receipt: SettlementReceipt) -> None:
        """Insert a processed-event row; the primary key enforces at-most-once."""
        try:
            self.backend.execute(
                """
                INSERT INTO processed_events
                    (source_chain_id, source_tx_id, digest, asset_id, amount,
                     destination_account, height, settled_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    receipt.source_chain_id,
                    receipt.source_tx_id,
                    receipt.digest.to_hex(),
                    receipt.asset_id,
                    str(receipt.amount),
                    receipt.destination_account,
                    receipt.height,
                    time.time(),
                ),
            )
        except StorageError as e:
            if isinstance(e.cause, sqlite3.IntegrityError):
                raise AlreadyProcessed(receipt.source_chain_id, receipt.source_tx_id) from e
            raise

    def save_failure(self, failure: SettlementFailure) -> None:
        self.backend.execute(
            """
            INSERT OR REPLACE INTO settlement_failures
                (digest, source_chain_id, source_tx_id, error_code, message, height)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                failure.digest.to_hex(),
                failure.source_chain_id,
                failure.source_tx_id,
                failure.error_code,
                failure.message,
                failure.height,
            ),
        )

    def delete_failure(self, digest: Hash) -> None:
        self.backend.execute(
            "DELETE FROM settlement_failures WHERE digest = ?", (digest.to_hex(),)
        )

    def load_state(self) -> PersistedState:
        """Read the full bridge state."""
        state = PersistedState()

        for row in self.backend.execute("SELECT * FROM relayers ORDER BY account_id"):
            state.relayers.append(
                RelayerIdentity(
                    account_id=row["account_id"],
                    enabled=bool(row["enabled"]),
                    registered_at=row["registered_at"],
                    disabled_at=row["disabled_at"],
                )
            )

        rows = self.backend.execute(
            "SELECT value FROM bridge_settings WHERE key = ?", (THRESHOLD_KEY,)
        )
        if rows:
            state.threshold = int(rows[0]["value"])

        rows = self.backend.execute(
            "SELECT value FROM bridge_settings WHERE key = ?", (PAUSED_KEY,)
        )
        state.paused = bool(rows) and rows[0]["value"] == "1"

        votes = {}
        for row in self.backend.execute("SELECT digest, relayer_id FROM attestation_votes"):
            votes.setdefault(row["digest"], set()).add(row["relayer_id"])

        for row in self.backend.execute("SELECT * FROM attestation_records ORDER BY digest"):
            state.records.append(
                AttestationRecord(
                    digest=Hash.from_hex(row["digest"]),
                    event=BridgeEvent.from_dict(json.loads(row["event"])),
                    first_seen_height=row["first_seen_height"],
                    voters=votes.get(row["digest"], set()),
                    quorum_reached=bool(row["quorum_reached"]),
                    last_error=row["last_error"],
                )
            )

        for row in self.backend.execute("SELECT * FROM equivocations ORDER BY id"):
            state.equivocations.append(
                Equivocation(
                    relayer_id=row["relayer_id"],
                    source_chain_id=row["source_chain_id"],
                    source_tx_id=row["source_tx_id"],
                    first_digest=Hash.from_hex(row["first_digest"]),
                    conflicting_digest=Hash.from_hex(row["conflicting_digest"]),
                    height=row["height"],
                )
            )

        for row in self.backend.execute("SELECT * FROM processed_events"):
            state.receipts.append(
                SettlementReceipt(
                    source_chain_id=row["source_chain_id"],
                    source_tx_id=row["source_tx_id"],
                    digest=Hash.from_hex(row["digest"]),
                    asset_id=row["asset_id"],
                    amount=int(row["amount"]),
                    destination_account=row["destination_account"],
                    height=row["height"],
                )
            )

        for row in self.backend.execute("SELECT * FROM settlement_failures ORDER BY digest"):
            state.failures.append(
                SettlementFailure(
                    digest=Hash.from_hex(row["digest"]),
                    source_chain_id=row["source_chain_id"],
                    source_tx_id=row["source_tx_id"],
                    error_code=row["error_code"],
                    message=row["message"],
                    height=row["height"],
                )
            )

        return state
