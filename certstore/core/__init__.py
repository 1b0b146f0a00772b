"""
Core module: configuration, data models, exceptions, and storage.

This module provides the foundational types and persistence layer:

Config (config.py):
    - StorageConfig: Immutable DSN and timeouts, resolved from env and defaults

Models (models.py):
    - KeyInfo: Size and modification time of a stored key
    - LockRecord: A row of the locks table
    - StorageStats: Record and lock counts

Exceptions (exceptions.py):
    - CertStoreError: Base exception for all certstore errors
    - KeyNotFoundError: Requested key doesn't exist
    - AlreadyLockedError: Key is held by a live lease
    - UnsupportedOperationError: Recursive listing was requested
    - DatabaseError / QueryTimeoutError: Backing store failures
    - ConfigurationError: Store cannot be built from the config

Storage (storage/):
    - CertStorage: Facade for all database operations
"""

from certstore.core.config import StorageConfig
from certstore.core.deadline import Deadline
from certstore.core.exceptions import (
    AlreadyLockedError,
    CertStoreError,
    ConfigurationError,
    DatabaseError,
    KeyNotFoundError,
    QueryTimeoutError,
    UnsupportedOperationError,
)
from certstore.core.hashing import hash_key
from certstore.core.models import KeyInfo, LockRecord, StorageStats
from certstore.core.storage import CertStorage, open_storage

__all__ = [
    # Config
    "StorageConfig",
    "Deadline",
    # Models
    "KeyInfo",
    "LockRecord",
    "StorageStats",
    # Exceptions
    "CertStoreError",
    "KeyNotFoundError",
    "AlreadyLockedError",
    "UnsupportedOperationError",
    "DatabaseError",
    "QueryTimeoutError",
    "ConfigurationError",
    # Storage
    "CertStorage",
    "hash_key",
    "open_storage",
]
