"""
Storage layer: SQLite persistence for certificates, keys, and locks.

This module provides database operations split by concern:

Components:
    - CertStorage: Main facade that coordinates all storage
    - RecordStore: store/load/delete/exists/list/stat on the data table
    - LockManager: Lease-based advisory locks on the locks table
    - ensure_schema: Idempotent bootstrap of tables and trigger
    - Database / Transaction: Pooled connections and transactions behind one protocol

Database Schema:
    certmagic_data: key_hash, key, value, modified
    certmagic_locks: key_hash, key, expires

Rows are addressed by key_hash, the salted MD5 of the logical key.
"""

from certstore.core.storage.database import Database, Queryer, Transaction
from certstore.core.storage.locks import LockManager
from certstore.core.storage.records import RecordStore, escape_like
from certstore.core.storage.repository import CertStorage, open_storage
from certstore.core.storage.schema import DATA_TABLE, LOCKS_TABLE, ensure_schema

__all__ = [
    "CertStorage",
    "RecordStore",
    "LockManager",
    "Database",
    "Transaction",
    "Queryer",
    "ensure_schema",
    "escape_like",
    "open_storage",
    "DATA_TABLE",
    "LOCKS_TABLE",
]
