"""Persistence backend for QuorumBridge."""

from .database import MEMORY_DATABASE, SCHEMA, DatabaseConfig, DatabaseStats, SQLiteBackend

__all__ = [
    "DatabaseConfig",
    "DatabaseStats",
    "SQLiteBackend",
    "MEMORY_DATABASE",
    "SCHEMA",
]
