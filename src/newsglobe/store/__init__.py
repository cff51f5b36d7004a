from newsglobe.store.cache_store import CacheStore, PersistenceConflictError, StoreStats
from newsglobe.store.session import SessionManager

__all__ = [
    "CacheStore",
    "PersistenceConflictError",
    "SessionManager",
    "StoreStats",
]
