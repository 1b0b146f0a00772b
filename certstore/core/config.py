"""Storage configuration.

A StorageConfig is an immutable value. It holds no live handles; turn it into
a working store with ``CertStorage.from_config``.

Sources, in order of precedence:
    1. Explicit values (keyword arguments, a JSON mapping, or directive lines)
    2. The ``sqlite_DSN`` environment variable (DSN only)
    3. Built-in defaults
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from certstore.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DSN_ENV_VAR = "sqlite_DSN"
DEFAULT_DSN = "/var/lib/caddy/.local/share/caddy/certs.sqlite"
DEFAULT_QUERY_TIMEOUT = 3.0
DEFAULT_LOCK_TIMEOUT = 60.0

_FIELDS = ("dsn", "query_timeout", "lock_timeout")


@dataclass(frozen=True)
class StorageConfig:
    """Connection string and timeouts (in seconds) for a store."""

    dsn: str = ""
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    @classmethod
    def from_env(
        cls,
        dsn: str | None = None,
        query_timeout: float | None = None,
        lock_timeout: float | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> StorageConfig:
        """Build a config, filling anything unset from the environment and defaults.

        A zero or missing timeout takes its default.
        """
        env = os.environ if environ is None else environ
        config = cls(
            dsn=dsn or env.get(DSN_ENV_VAR, "") or DEFAULT_DSN,
            query_timeout=query_timeout or DEFAULT_QUERY_TIMEOUT,
            lock_timeout=lock_timeout or DEFAULT_LOCK_TIMEOUT,
        )
        logger.debug("Resolved storage config %r", config)
        return config

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Any], environ: Mapping[str, str] | None = None
    ) -> StorageConfig:
        """Build a config from a JSON-style mapping.

        Unknown keys are ignored. Timeouts that cannot be parsed are skipped
        and fall back to their defaults.
        """
        values: dict[str, Any] = {}
        for name in _FIELDS:
            raw = mapping.get(name)
            if raw is None:
                continue
            if name == "dsn":
                values["dsn"] = str(raw)
                continue
            try:
                values[name] = float(raw)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid %s value: %r", name, raw)
        return cls.from_env(environ=environ, **values)

    @classmethod
    def from_directives(cls, text: str, environ: Mapping[str, str] | None = None) -> StorageConfig:
        """Build a config from ``name value`` lines.

        Example::

            dsn /srv/certs.sqlite
            query_timeout 5
            lock_timeout 120
        """
        mapping: dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 1)
            if len(parts) != 2:
                continue
            name, value = parts
            if name in _FIELDS:
                mapping[name] = value.strip()
        return cls.from_mapping(mapping, environ=environ)

    def validate(self) -> None:
        """Raise ConfigurationError if the config cannot build a store."""
        if not self.dsn:
            raise ConfigurationError("dsn not set")
        if self.query_timeout <= 0:
            raise ConfigurationError(f"query_timeout must be > 0, got {self.query_timeout}")
        if self.lock_timeout <= 0:
            raise ConfigurationError(f"lock_timeout must be > 0, got {self.lock_timeout}")
