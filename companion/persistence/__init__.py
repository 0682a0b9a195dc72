"""
Companion Persistence Layer

SQLite-backed key-value storage for data that must survive restarts
(currently the bounded task history).
"""

from companion.persistence.store import KeyValueStore

__all__ = [
    "KeyValueStore",
]
