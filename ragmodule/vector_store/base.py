"""
VectorStore: abstract base class for vector storage implementations.

A store keeps ``(id, vector)`` pairs in named collections and answers
nearest-neighbour queries with cosine distance. Collection names are
validated table names; backends map them onto whatever naming rules they
have.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence


class VectorStore(ABC):
    """
    Interface every vector store backend implements.

    Example:
        >>> store = InMemoryVectorStore()
        >>> store.initialize(":memory:")
        >>> store.create_collection_if_not_exists("docs")
        >>> store.upsert("docs", 1, [0.1, 0.2, 0.3])
        True
        >>> store.similarity_search("docs", [0.1, 0.2, 0.3], limit=5)
        [1]
        >>> store.close()
    """

    @abstractmethod
    def initialize(self, storage_path: str) -> None:
        """
        Open the store at ``storage_path``.

        Raises ``RAGError(DATABASE_CONNECTION_FAILED)`` when the backend
        cannot be opened.
        """

    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    @abstractmethod
    def create_collection_if_not_exists(self, name: str) -> None:
        """Create the collection; raises ``RAGError(TABLE_CREATION_FAILED)``."""

    @abstractmethod
    def upsert(self, name: str, id: int, vector: Sequence[float]) -> bool:
        """
        Insert or replace the vector stored under ``id``.

        Returns whether the write was applied. Raises
        ``RAGError(VECTOR_SAVE_FAILED)`` on backend failure.
        """

    @abstractmethod
    def similarity_search(
        self, name: str, vector: Sequence[float], limit: int
    ) -> List[int]:
        """
        Return up to ``limit`` ids ordered by ascending cosine distance.

        An absent or empty collection yields ``[]``. Raises
        ``RAGError(SEARCH_FAILED)`` on backend failure.
        """

    @abstractmethod
    def delete(self, name: str, id: int) -> bool:
        """Remove ``id``; returns True if it existed."""

    @abstractmethod
    def list_collections(self) -> List[str]:
        """Names of the collections in this store, as passed by callers."""

    @abstractmethod
    def close(self) -> None:
        """Release the backend. Safe to call when not initialized."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
