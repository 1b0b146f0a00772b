"""CertStore custom exceptions."""


class CertStoreError(Exception):
    """Base exception for CertStore errors."""


class KeyNotFoundError(CertStoreError, FileNotFoundError):
    """Key does not exist in the store."""


class AlreadyLockedError(CertStoreError):
    """Key is held by a lock that has not expired."""


class UnsupportedOperationError(CertStoreError):
    """Operation is not supported by this backend."""


class DatabaseError(CertStoreError):
    """Error reported by the backing database."""


class QueryTimeoutError(DatabaseError):
    """Database call exceeded its deadline or was cancelled."""


class ConfigurationError(CertStoreError):
    """Storage configuration is missing or invalid."""
