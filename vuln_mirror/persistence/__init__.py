"""
Storage backends for mirrored vulnerability data.

- Store / StoreSession: the transactional contract the reconcilers write through
- PostgresStore: asyncpg implementation used in production
- MemoryStore: in-process implementation for dry runs and tests
"""

from .base import Store, StoreSession
from .memory import MemoryStore
from .postgres import PostgresStore

__all__ = [
    'Store',
    'StoreSession',
    'MemoryStore',
    'PostgresStore',
]
