"""
Storage collaborators.

`base` defines the per-entity driver interfaces and the scoped
transaction; `postgres` is the asyncpg adapter bound at startup.
"""

from .base import MenuDriver, Storage, StorageSession, UniqueViolation, UserDriver

__all__ = [
    "MenuDriver",
    "Storage",
    "StorageSession",
    "UniqueViolation",
    "UserDriver",
]
