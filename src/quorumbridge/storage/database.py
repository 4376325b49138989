"""SQLite backend for QuorumBridge.

This module provides connection management, query execution and nested
transactions over a single SQLite connection, plus the schema for the
bridge's durable state.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from ..errors import StorageError
from ..logging import get_logger

logger = get_logger(__name__)

MEMORY_DATABASE = ":memory:"

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]


@dataclass
class DatabaseConfig:
    """Database configuration."""

    database_path: str = "quorumbridge.db"
    connection_timeout: float = 30.0
    synchronous: str = "FULL"  # OFF, NORMAL, FULL
    journal_mode: str = "WAL"  # DELETE, TRUNCATE, PERSIST, MEMORY, WAL, OFF
    slow_query_threshold: float = 1.0  # seconds


@dataclass
class DatabaseStats:
    """Database statistics."""

    total_queries: int = 0
    slow_queries: int = 0
    transactions_committed: int = 0
    transactions_rolled_back: int = 0
    total_execution_time: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS relayers (
        account_id TEXT PRIMARY KEY,
        enabled INTEGER NOT NULL,
        registered_at REAL NOT NULL,
        disabled_at REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bridge_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attestation_records (
        digest TEXT PRIMARY KEY,
        event TEXT NOT NULL,  -- JSON
        source_chain_id TEXT NOT NULL,
        source_tx_id TEXT NOT NULL,
        first_seen_height INTEGER NOT NULL,
        quorum_reached INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attestation_votes (
        digest TEXT NOT NULL,
        relayer_id TEXT NOT NULL,
        PRIMARY KEY (digest, relayer_id),
        FOREIGN KEY (digest) REFERENCES attestation_records(digest) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS equivocations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        relayer_id TEXT NOT NULL,
        source_chain_id TEXT NOT NULL,
        source_tx_id TEXT NOT NULL,
        first_digest TEXT NOT NULL,
        conflicting_digest TEXT NOT NULL,
        height INTEGER NOT NULL
    )
    """,
    # amount is TEXT: 128-bit values do not fit SQLite integers
    """
    CREATE TABLE IF NOT EXISTS processed_events (
        source_chain_id TEXT NOT NULL,
        source_tx_id TEXT NOT NULL,
        digest TEXT NOT NULL,
        asset_id TEXT NOT NULL,
        amount TEXT NOT NULL,
        destination_account TEXT NOT NULL,
        height INTEGER NOT NULL,
        settled_at REAL NOT NULL,
        PRIMARY KEY (source_chain_id, source_tx_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settlement_failures (
        digest TEXT PRIMARY KEY,
        source_chain_id TEXT NOT NULL,
        source_tx_id TEXT NOT NULL,
        error_code TEXT NOT NULL,
        message TEXT NOT NULL,
        height INTEGER NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_records_source
        ON attestation_records(source_chain_id, source_tx_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_votes_relayer ON attestation_votes(relayer_id)
    """,
]


class SQLiteBackend:
    """SQLite database backend implementation."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._stats = DatabaseStats()

        if config.database_path != MEMORY_DATABASE:
            Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def connect(self) -> None:
        """Establish SQLite database connection."""
        with self._lock:
            if self._connection is not None:
                return

            try:
                self._connection = sqlite3.connect(
                    self.config.database_path,
                    timeout=self.config.connection_timeout,
                    isolation_level=None,  # transactions are managed explicitly
                    check_same_thread=False,
                )
                self._configure_sqlite()
                self._create_tables()
            except sqlite3.Error as e:
                self._connection = None
                raise StorageError(f"Failed to connect to database: {e}", operation="connect", cause=e)

            logger.info(f"Connected to SQLite database: {self.config.database_path}")

    def disconnect(self) -> None:
        """Close SQLite database connection."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                except sqlite3.Error as e:
                    logger.error(f"Error closing database connection: {e}")
                finally:
                    self._connection = None
                    self._depth = 0
                logger.info("Disconnected from SQLite database")

    def _configure_sqlite(self) -> None:
        """Configure SQLite durability settings."""
        pragmas = [
            f"PRAGMA synchronous = {self.config.synchronous}",
            "PRAGMA foreign_keys = ON",
        ]
        if self.config.database_path != MEMORY_DATABASE:
            pragmas.append(f"PRAGMA journal_mode = {self.config.journal_mode}")

        for pragma in pragmas:
            self._connection.execute(pragma)

    def _create_tables(self) -> None:
        """Create database tables."""
        for table_sql in SCHEMA:
            self._connection.execute(table_sql)

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute a query and return its rows as dictionaries."""
        with self._lock:
            if self._connection is None:
                raise StorageError("Database not connected", operation="execute")

            start_time = time.time()
            cursor = self._connection.cursor()
            try:
                cursor.execute(query, params or ())
                columns = (
                    [description[0] for description in cursor.description]
                    if cursor.description
                    else []
                )
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise StorageError(f"Query execution failed: {e}", operation="execute", cause=e)
            finally:
                cursor.close()

            execution_time = time.time() - start_time
            self._stats.total_queries += 1
            self._stats.total_execution_time += execution_time
            if execution_time > self.config.slow_query_threshold:
                self._stats.slow_queries += 1
                logger.warning(f"Slow query detected: {execution_time:.3f}s - {query.strip()[:100]}")

            return rows

    @contextmanager
    def transaction(self) -> Iterator["SQLiteBackend"]:
        """Run the enclosed statements atomically.

        Nested calls join the outermost transaction; only the outermost
        one commits or rolls back.
        """
        with self._lock:
            if self._connection is None:
                raise StorageError("Database not connected", operation="transaction")

            outermost = self._depth == 0
            if outermost:
                self._connection.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._connection.execute("ROLLBACK")
                    self._stats.transactions_rolled_back += 1
                raise
            else:
                self._depth -= 1
                if outermost:
                    try:
                        self._connection.execute("COMMIT")
                    except sqlite3.Error as e:
                        self._connection.execute("ROLLBACK")
                        self._stats.transactions_rolled_back += 1
                        raise StorageError(f"Commit failed: {e}", operation="commit", cause=e)
                    self._stats.transactions_committed += 1

    def get_stats(self) -> DatabaseStats:
        """Get database statistics."""
        with self._lock:
            return DatabaseStats(
                total_queries=self._stats.total_queries,
                slow_queries=self._stats.slow_queries,
                transactions_committed=self._stats.transactions_committed,
                transactions_rolled_back=self._stats.transactions_rolled_back,
                total_execution_time=self._stats.total_execution_time,
            )

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
