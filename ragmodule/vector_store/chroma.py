"""
ChromaVectorStore: ChromaDB implementation of VectorStore.

Vectors are stored with caller-supplied integer ids (as strings) in one
Chroma collection per table name, using cosine distance. Chroma collection
names must be 3-63 characters and start and end with an alphanumeric, so
table names are mapped through :func:`collection_name_for`; the original
table name is kept in the collection metadata.
"""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

try:
    import chromadb
    from chromadb.config import Settings
    _CHROMA_AVAILABLE = True
except ImportError:
    _CHROMA_AVAILABLE = False

from ragmodule.errors import ErrorKind, RAGError
from ragmodule.observability import EventRecorder, get_event_recorder
from ragmodule.vector_store.base import VectorStore

MEMORY_STORAGE_PATH = ":memory:"
COLLECTION_PREFIX = "rag_"
TABLE_METADATA_KEY = "rag_table"
_MAX_COLLECTION_NAME = 63


def collection_name_for(table_name: str) -> str:
    """Map a validated table name onto a legal, deterministic Chroma name."""
    candidate = f"{COLLECTION_PREFIX}{table_name}_v"
    if len(candidate) <= _MAX_COLLECTION_NAME:
        return candidate
    digest = hashlib.sha1(table_name.encode("utf-8")).hexdigest()[:12]
    return f"{COLLECTION_PREFIX}{table_name[:40]}_{digest}"


class ChromaVectorStore(VectorStore):
    """
    Chroma implementation of VectorStore.

    Example:
        >>> store = ChromaVectorStore()
        >>> store.initialize("./rag_vectors")
        >>> store.create_collection_if_not_exists("articles")
        >>> store.upsert("articles", 7, embedding)
        True
        >>> store.similarity_search("articles", query_embedding, limit=3)
        [7]
        >>> store.close()

    ``storage_path=":memory:"`` uses an ephemeral client.
    """

    def __init__(self, recorder: Optional[EventRecorder] = None) -> None:
        self._recorder = recorder or get_event_recorder("rag.vector_store")
        self.client: Any = None
        self._storage_path: Optional[str] = None
        self._collections: Dict[str, Any] = {}

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        base_payload: Dict[str, Any] = {
            "backend": "chroma",
            "storage_path": self._storage_path,
        }
        if payload:
            base_payload.update(payload)
        self._recorder.record(name=name, payload=base_payload)

    def _require_client(self) -> Any:
        if self.client is None:
            raise RAGError(
                "Vector store not initialized", ErrorKind.DATABASE_CONNECTION_FAILED
            )
        return self.client

    def initialize(self, storage_path: str) -> None:
        if self.client is not None:
            return
        self._emit_event("initialize.start", {"storage_path": storage_path})
        started = time.perf_counter()
        try:
            if not _CHROMA_AVAILABLE:
                raise ImportError(
                    "ChromaDB is required for ChromaVectorStore. "
                    "Install it with: pip install chromadb"
                )
            settings = Settings(anonymized_telemetry=False)
            if storage_path == MEMORY_STORAGE_PATH:
                client = chromadb.EphemeralClient(settings=settings)
            else:
                path = Path(storage_path).expanduser()
                path.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(path), settings=settings)
        except Exception as exc:
            self._emit_event(
                "initialize.error", {"storage_path": storage_path, "error": str(exc)}
            )
            raise RAGError(
                f"Failed to open vector store at {storage_path}: {exc}",
                ErrorKind.DATABASE_CONNECTION_FAILED,
                exc,
            ) from exc

        self.client = client
        self._storage_path = storage_path
        self._emit_event(
            "initialize.complete",
            {"duration_ms": (time.perf_counter() - started) * 1000.0},
        )

    def is_initialized(self) -> bool:
        return self.client is not None

    def _existing_collection_names(self) -> List[str]:
        names = []
        for entry in self._require_client().list_collections():
            # Older chromadb releases return Collection objects, newer ones names.
            names.append(entry if isinstance(entry, str) else entry.name)
        return names

    def _get_collection(self, table_name: str) -> Any:
        """Return the collection for ``table_name`` or None if it does not exist."""
        cached = self._collections.get(table_name)
        if cached is not None:
            return cached
        client = self._require_client()
        chroma_name = collection_name_for(table_name)
        if chroma_name not in self._existing_collection_names():
            return None
        collection = client.get_collection(name=chroma_name)
        self._collections[table_name] = collection
        return collection

    def create_collection_if_not_exists(self, name: str) -> None:
        client = self._require_client()
        if name in self._collections:
            return
        try:
            collection = client.get_or_create_collection(
                name=collection_name_for(name),
                metadata={"hnsw:space": "cosine", TABLE_METADATA_KEY: name},
            )
        except Exception as exc:
            self._emit_event("create_collection.error", {"collection": name, "error": str(exc)})
            raise RAGError(
                f"Failed to create collection '{name}': {exc}",
                ErrorKind.TABLE_CREATION_FAILED,
                exc,
            ) from exc
        self._collections[name] = collection
        self._emit_event("create_collection.complete", {"collection": name})

    def upsert(self, name: str, id: int, vector: Sequence[float]) -> bool:
        self._emit_event("upsert.start", {"collection": name, "id": id})
        try:
            collection = self._get_collection(name)
            if collection is None:
                raise RAGError(
                    f"Collection '{name}' does not exist", ErrorKind.VECTOR_SAVE_FAILED
                )
            collection.upsert(ids=[str(id)], embeddings=[list(vector)])
        except RAGError as exc:
            self._emit_event("upsert.error", {"collection": name, "id": id, "error": str(exc)})
            raise
        except Exception as exc:
            self._emit_event("upsert.error", {"collection": name, "id": id, "error": str(exc)})
            raise RAGError(
                f"Failed to save vector {id} to '{name}': {exc}",
                ErrorKind.VECTOR_SAVE_FAILED,
                exc,
            ) from exc
        self._emit_event("upsert.complete", {"collection": name, "id": id})
        return True

    def similarity_search(
        self, name: str, vector: Sequence[float], limit: int
    ) -> List[int]:
        self._emit_event("similarity_search.start", {"collection": name, "limit": limit})
        try:
            collection = self._get_collection(name)
            if collection is None:
                ids: List[int] = []
            else:
                count = collection.count()
                if count == 0:
                    ids = []
                else:
                    results = collection.query(
                        query_embeddings=[list(vector)],
                        n_results=min(limit, count),
                        include=["distances"],
                    )
                    ids = [int(uid) for uid in (results["ids"][0] if results["ids"] else [])]
        except RAGError:
            raise
        except Exception as exc:
            self._emit_event(
                "similarity_search.error", {"collection": name, "error": str(exc)}
            )
            raise RAGError(
                f"Failed to search collection '{name}': {exc}",
                ErrorKind.SEARCH_FAILED,
                exc,
            ) from exc
        self._emit_event(
            "similarity_search.complete",
            {"collection": name, "limit": limit, "result_count": len(ids)},
        )
        return ids

    def delete(self, name: str, id: int) -> bool:
        try:
            collection = self._get_collection(name)
            if collection is None:
                return False
            uid = str(id)
            existing = collection.get(ids=[uid], include=[])
            if not existing["ids"]:
                return False
            collection.delete(ids=[uid])
        except RAGError:
            raise
        except Exception as exc:
            self._emit_event("delete.error", {"collection": name, "id": id, "error": str(exc)})
            raise RAGError(
                f"Failed to delete vector {id} from '{name}': {exc}",
                ErrorKind.VECTOR_SAVE_FAILED,
                exc,
            ) from exc
        self._emit_event("delete.complete", {"collection": name, "id": id})
        return True

    def list_collections(self) -> List[str]:
        client = self._require_client()
        tables = []
        for chroma_name in self._existing_collection_names():
            if not chroma_name.startswith(COLLECTION_PREFIX):
                continue
            metadata = client.get_collection(name=chroma_name).metadata or {}
            table = metadata.get(TABLE_METADATA_KEY)
            if table:
                tables.append(table)
        return sorted(tables)

    def close(self) -> None:
        if self.client is None:
            return
        self._emit_event("close.start")
        # Chroma clients have no explicit close; dropping references releases them.
        self.client = None
        self._collections = {}
        self._emit_event("close.complete")
        self._storage_path = None
