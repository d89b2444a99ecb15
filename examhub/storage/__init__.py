"""
Storage abstractions.

Integration points:
- ContentStorage → filesystem / object storage (images)
- MetadataStorage → relational database
- CacheStorage → Redis (leaderboards)
"""

from examhub.storage.base import (
    ContentStorage,
    MetadataStorage,
    CacheStorage,
    StorageProvider,
    Collections,
    DuplicateKeyError,
)
from examhub.storage.local import create_local_storage

__all__ = [
    "ContentStorage",
    "MetadataStorage",
    "CacheStorage",
    "StorageProvider",
    "Collections",
    "DuplicateKeyError",
    "create_local_storage",
]
