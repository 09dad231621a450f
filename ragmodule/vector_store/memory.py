"""Process-local vector store backed by numpy arrays."""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ragmodule.errors import ErrorKind, RAGError
from ragmodule.observability import EventRecorder, get_event_recorder
from ragmodule.vector_store.base import VectorStore


class InMemoryVectorStore(VectorStore):
    """
    VectorStore that keeps every collection in memory.

    Nothing is persisted; ``storage_path`` is recorded for introspection
    only. Search is an exact cosine-distance scan, ties broken by id.
    """

    def __init__(self, recorder: Optional[EventRecorder] = None) -> None:
        self._recorder = recorder or get_event_recorder("rag.vector_store")
        self._lock = threading.RLock()
        self._collections: Optional[Dict[str, Dict[int, np.ndarray]]] = None
        self.storage_path: Optional[str] = None

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        base_payload: Dict[str, Any] = {"backend": "memory"}
        if payload:
            base_payload.update(payload)
        self._recorder.record(name=name, payload=base_payload)

    def _require_open(self) -> Dict[str, Dict[int, np.ndarray]]:
        if self._collections is None:
            raise RAGError(
                "Vector store not initialized", ErrorKind.DATABASE_CONNECTION_FAILED
            )
        return self._collections

    def initialize(self, storage_path: str) -> None:
        with self._lock:
            if self._collections is None:
                self._collections = {}
            self.storage_path = storage_path
        self._emit_event("initialize.complete", {"storage_path": storage_path})

    def is_initialized(self) -> bool:
        return self._collections is not None

    def create_collection_if_not_exists(self, name: str) -> None:
        with self._lock:
            self._require_open().setdefault(name, {})

    def upsert(self, name: str, id: int, vector: Sequence[float]) -> bool:
        array = np.asarray(vector, dtype=np.float32)
        with self._lock:
            collections = self._require_open()
            collection = collections.get(name)
            if collection is None:
                raise RAGError(
                    f"Collection '{name}' does not exist", ErrorKind.VECTOR_SAVE_FAILED
                )
            existing = next(iter(collection.values()), None)
            if existing is not None and existing.shape != array.shape:
                raise RAGError(
                    f"Vector dimension {array.shape[0]} does not match collection "
                    f"dimension {existing.shape[0]}",
                    ErrorKind.VECTOR_SAVE_FAILED,
                )
            collection[int(id)] = array
        self._emit_event("upsert.complete", {"collection": name, "id": id})
        return True

    def similarity_search(
        self, name: str, vector: Sequence[float], limit: int
    ) -> List[int]:
        query = np.asarray(vector, dtype=np.float32)
        with self._lock:
            collection = self._require_open().get(name)
            if not collection:
                return []
            ids = np.fromiter(collection.keys(), dtype=np.int64, count=len(collection))
            matrix = np.stack(list(collection.values()))

        if matrix.shape[1] != query.shape[0]:
            raise RAGError(
                f"Query dimension {query.shape[0]} does not match collection "
                f"dimension {matrix.shape[1]}",
                ErrorKind.SEARCH_FAILED,
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            similarity = np.where(norms > 0, matrix @ query / norms, 0.0)
        distances = 1.0 - similarity
        order = np.lexsort((ids, distances))[:limit]
        result = [int(ids[index]) for index in order]
        self._emit_event(
            "similarity_search.complete",
            {"collection": name, "limit": limit, "result_count": len(result)},
        )
        return result

    def delete(self, name: str, id: int) -> bool:
        with self._lock:
            collection = self._require_open().get(name)
            if collection is None:
                return False
            return collection.pop(int(id), None) is not None

    def list_collections(self) -> List[str]:
        with self._lock:
            return sorted(self._require_open())

    def close(self) -> None:
        with self._lock:
            if self._collections is None:
                return
            self._collections = None
        self._emit_event("close.complete")
