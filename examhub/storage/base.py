"""
Storage abstraction layer.

All persistence goes through these interfaces. Handlers never reach for a
module-level client: a StorageProvider is built once at startup, placed on
``app.state`` and handed to services through FastAPI dependencies.

Integration points:
- ContentStorage → filesystem or object storage (question/profile images)
- MetadataStorage → relational database or document store
- CacheStorage → Redis or in-process (leaderboards)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from pydantic import BaseModel


class DuplicateKeyError(Exception):
    """A unique constraint rejected a write."""

    def __init__(self, collection: str, field: str, value: Any):
        self.collection = collection
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field} in {collection}: {value!r}")


# =============================================================================
# Storage Interfaces
# =============================================================================


class ContentStorage(ABC):
    """Storage for binary content (uploaded images)."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store content, return URL/path."""
        pass

    @abstractmethod
    async def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get a URL for direct access."""
        pass


class MetadataStorage(ABC):
    """
    Storage for structured records (accounts, questions, exams, ...).

    Filters are equality matches on top-level fields.
    """

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Save (create or replace) a record."""
        pass

    @abstractmethod
    async def insert(
        self,
        collection: str,
        id: str,
        data: dict[str, Any],
        unique: Sequence[str] = (),
    ) -> None:
        """
        Create a new record.

        Raises DuplicateKeyError if the id exists or any field named in
        ``unique`` collides with an existing record.
        """
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        """Get a record by ID."""
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        """Delete a record."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query records with optional filters."""
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Partial update of a record."""
        pass

    @abstractmethod
    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        """Count records matching filters."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Connectivity check."""
        pass


class CacheStorage(ABC):
    """Fast key-value cache for derived data such as leaderboards."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL in seconds."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix, return how many."""
        pass


# =============================================================================
# Storage Provider (dependency injection container)
# =============================================================================


class StorageProvider(BaseModel):
    """
    Container for all storage backends.

    Initialize once at app startup with appropriate implementations.
    Services receive this and use the interfaces without knowing
    the underlying implementation.
    """

    model_config = {"arbitrary_types_allowed": True}

    content: ContentStorage
    metadata: MetadataStorage
    cache: CacheStorage


# =============================================================================
# Collection Names (for MetadataStorage)
# =============================================================================


class Collections:
    """Standard collection/table names."""

    ACCOUNTS = "accounts"
    QUESTIONS = "questions"
    EXAMS = "exams"
    EXAM_SECTIONS = "exam_sections"
    EXAM_QUESTIONS = "exam_questions"
    EXAM_SECTION_QUESTIONS = "exam_section_questions"
    SUBMISSIONS = "submissions"
    RANKINGS = "rankings"
