"""
Key/value storage for dead letters, stored records and queue deliveries.
"""

from .kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore, create_store

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_store",
]
