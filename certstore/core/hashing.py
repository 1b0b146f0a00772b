"""Key hashing for the physical primary key."""

from __future__ import annotations

import hashlib

# Part of the persisted format: changing either breaks existing databases.
KEY_HASH_SALT = "storage.sqlite.salt"


def hash_key(key: str) -> str:
    """Return the lowercase hex MD5 of the key concatenated with the salt."""
    return hashlib.md5((key + KEY_HASH_SALT).encode("utf-8")).hexdigest()
