"""
DocumentStore: abstract base class for relational document storage.

Each table holds rows of ``(id, title, content, metadata, created_at,
updated_at)``. The generated ``id`` is the key the hybrid module reuses
for the matching vector.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Sequence

from ragmodule.types import DocumentRecord


class DocumentStore(ABC):
    """Interface every relational document backend implements."""

    @abstractmethod
    def initialize(self) -> None:
        """
        Connect and verify the connection.

        Raises ``RAGError(DATABASE_CONNECTION_FAILED)`` when the database is
        unreachable.
        """

    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    @abstractmethod
    def create_table_if_not_exists(self, name: str) -> None:
        """Create the document table; raises ``RAGError(TABLE_CREATION_FAILED)``."""

    @abstractmethod
    def insert(self, name: str, document: Mapping[str, Any]) -> int:
        """
        Insert a row and return its generated id.

        ``document`` carries ``content`` and optionally ``title`` and
        ``metadata``.
        """

    @abstractmethod
    def get_by_ids(self, name: str, ids: Sequence[int]) -> List[DocumentRecord]:
        """
        Fetch rows by id.

        The result follows the order of ``ids``; ids without a row are
        skipped and an absent table yields ``[]``.
        """

    def get(self, name: str, id: int) -> Optional[DocumentRecord]:
        records = self.get_by_ids(name, [id])
        return records[0] if records else None

    @abstractmethod
    def update(self, name: str, id: int, fields: Mapping[str, Any]) -> bool:
        """Apply ``fields`` to the row; returns True if the row exists."""

    @abstractmethod
    def delete(self, name: str, id: int) -> bool:
        """Delete the row; returns True if it existed."""

    @abstractmethod
    def list_tables(self) -> List[str]:
        pass

    @property
    def description(self) -> str:
        """Human-readable location of the store, safe for logs."""
        return type(self).__name__

    @abstractmethod
    def close(self) -> None:
        """Dispose of the connection pool. Safe to call when not initialized."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
