"""
CertStore: SQLite-backed storage for an ACME certificate manager.

CertStore keeps certificates, account keys, and metadata in a database
table instead of on the filesystem, enabling you to:
- Share one certificate store between several processes
- Serialize work on a key with lease-based advisory locks
- Enumerate stored keys by prefix

Usage:
    from certstore.core import CertStorage, StorageConfig

    config = StorageConfig.from_env(dsn="/srv/certs.sqlite")
    with CertStorage.from_config(config) as storage:
        storage.lock("certificates/example.com")
        try:
            storage.store("certificates/example.com/example.com.crt", pem_bytes)
        finally:
            storage.unlock("certificates/example.com")
"""

__version__ = "0.1.0"
