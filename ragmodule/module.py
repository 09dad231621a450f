"""
RAGModule: embed, store and retrieve text by semantic similarity.

A module composes an :class:`~ragmodule.embedding.EmbeddingEngine`, a
:class:`~ragmodule.vector_store.VectorStore` and, for hybrid retrieval, a
:class:`~ragmodule.document_store.DocumentStore` behind one lifecycle::

    with RAGModule({"storage_path": "./vectors"}) as rag:
        rag.save(SaveRequest(id=1, text="Cats purr when content", tablename="notes"))
        rag.search(SearchRequest(text="feline happiness", tablename="notes", qty=5))

Hybrid modules keep full documents in a relational database and reuse the
generated row id as the vector id::

    rag = RAGModule(RAGConfig(relational=RelationalSettings(dialect="postgresql", ...)))
    rag.initialize()
    doc_id = rag.save_document({"content": "...", "tablename": "articles"})
    rag.search_documents({"text": "...", "tablename": "articles", "qty": 3})

Every data operation requires :meth:`RAGModule.initialize` to have
completed. Inputs are validated before any collaborator is called; foreign
failures surface as :class:`~ragmodule.errors.RAGError` with a kind naming
the failed step.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ragmodule.configuration import DEFAULT_LOG_LEVEL, RAGConfig, coerce_config
from ragmodule.document_store import DocumentStore, SQLDocumentStore
from ragmodule.embedding import EmbeddingEngine, SentenceTransformerEmbedder
from ragmodule.errors import ErrorKind, RAGError, invalid_input, translate_errors, wrap_error
from ragmodule.observability import EventRecorder, get_event_recorder, set_log_level
from ragmodule.types import (
    DatabaseInfo,
    DocumentRecord,
    EmbedRequest,
    HybridSearchRequest,
    ModelInfo,
    ModuleState,
    SaveDocumentRequest,
    SaveRequest,
    SearchRequest,
    SearchResult,
    coerce_request,
)
from ragmodule.validation import (
    sanitize_text,
    validate_id,
    validate_metadata,
    validate_search_quantity,
    validate_table_name,
    validate_text,
    validate_vector,
)
from ragmodule.vector_store import ChromaVectorStore, VectorStore

LOGGER = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
UPDATABLE_DOCUMENT_FIELDS = ("title", "content", "metadata")


def _clean_text(value: Any, field_name: str) -> str:
    cleaned = sanitize_text(validate_text(value, field_name)).strip()
    if not cleaned:
        raise invalid_input(f"{field_name} cannot be empty or whitespace only")
    return cleaned


def _clean_title(title: Any) -> Optional[str]:
    if title is None:
        return None
    if not isinstance(title, str):
        raise invalid_input("title must be a string")
    cleaned = sanitize_text(title).strip()
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise invalid_input(f"title exceeds maximum length of {MAX_TITLE_LENGTH} characters")
    return cleaned or None


def _require_flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise invalid_input(f"{name} must be a boolean")
    return value


class RAGModule:
    """
    Retrieval-augmented-generation helper.

    Args:
        config: A :class:`RAGConfig`, a plain mapping of config keys, or None
            for the defaults.
        embedding_engine: Engine to use instead of the default
            :class:`SentenceTransformerEmbedder`.
        vector_store: Store to use instead of the default
            :class:`ChromaVectorStore`.
        document_store: Relational store enabling the document operations.
            Defaults to a :class:`SQLDocumentStore` when ``config.relational``
            is set.
        recorder: Event recorder; components record under ``rag.*`` scopes.

    A non-default ``config.log_level`` is applied to the shared ``ragmodule``
    logger, so it affects every module in the process.
    """

    def __init__(
        self,
        config: RAGConfig | Mapping[str, Any] | None = None,
        *,
        embedding_engine: Optional[EmbeddingEngine] = None,
        vector_store: Optional[VectorStore] = None,
        document_store: Optional[DocumentStore] = None,
        recorder: Optional[EventRecorder] = None,
    ) -> None:
        self.config = coerce_config(config)
        if self.config.log_level != DEFAULT_LOG_LEVEL:
            set_log_level(self.config.log_level)

        root = recorder or get_event_recorder()
        self._recorder = root.scoped("rag.module")
        self._embedding = embedding_engine or SentenceTransformerEmbedder(
            device=self.config.device,
            normalize_embeddings=self.config.normalize_embeddings,
            recorder=root.scoped("rag.embedding"),
        )
        self._vectors = vector_store or ChromaVectorStore(
            recorder=root.scoped("rag.vector_store")
        )
        if document_store is None and self.config.relational is not None:
            document_store = SQLDocumentStore(
                self.config.relational, recorder=root.scoped("rag.document_store")
            )
        self._documents = document_store

        self._state = ModuleState.UNINITIALIZED
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ModuleState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is ModuleState.INITIALIZED

    @property
    def has_document_store(self) -> bool:
        return self._documents is not None

    def model_info(self) -> ModelInfo:
        return ModelInfo(
            path=self.config.model_path,
            is_loaded=self._embedding.is_initialized(),
            dimensions=self._embedding.dimensions,
        )

    def database_info(self) -> DatabaseInfo:
        """Describe the vector store and the collections it holds."""
        connected = self._vectors.is_initialized()
        tables: tuple[str, ...] = ()
        if connected:
            with translate_errors(ErrorKind.SEARCH_FAILED, "list vector collections"):
                tables = tuple(self._vectors.list_collections())
        return DatabaseInfo(path=self.config.storage_path, is_connected=connected, tables=tables)

    def document_database_info(self) -> DatabaseInfo:
        store = self._require_document_store()
        connected = store.is_initialized()
        tables: tuple[str, ...] = ()
        if connected:
            with translate_errors(ErrorKind.SEARCH_FAILED, "list document tables"):
                tables = tuple(store.list_tables())
        return DatabaseInfo(path=store.description, is_connected=connected, tables=tables)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        """
        Load the embedding model and open the stores.

        A no-op when already initialized. Closed modules cannot be
        re-initialized. If any step fails, the resources opened so far are
        released and the module stays uninitialized.
        """
        with self._lifecycle_lock:
            if self._state is ModuleState.INITIALIZED:
                return
            if self._state is ModuleState.CLOSED:
                raise invalid_input(
                    "RAG module has been closed; create a new instance to reinitialize"
                )

            self._emit_event(
                "initialize.start",
                {
                    "model_path": self.config.model_path,
                    "storage_path": self.config.storage_path,
                    "hybrid": self.has_document_store,
                },
            )
            started = time.perf_counter()
            opened: List[Any] = []
            try:
                self._embedding.initialize(self.config.model_path)
                opened.append(self._embedding)
                self._vectors.initialize(self.config.storage_path)
                opened.append(self._vectors)
                if self._documents is not None:
                    self._documents.initialize()
                    opened.append(self._documents)
            except Exception as exc:
                error = wrap_error(exc, ErrorKind.MODEL_LOAD_FAILED, "initialize RAG module")
                for resource in reversed(opened):
                    try:
                        resource.close()
                    except Exception:
                        LOGGER.warning(
                            "Failed to release %s after initialization error",
                            type(resource).__name__,
                            exc_info=True,
                        )
                LOGGER.error("RAG module initialization failed: %s", error)
                self._emit_event("initialize.error", {"error": str(error), "kind": error.kind.value})
                if error is exc:
                    raise
                raise error from exc

            self._state = ModuleState.INITIALIZED
            LOGGER.info("RAG module initialized (model=%s)", self.config.model_path)
            self._emit_event(
                "initialize.complete",
                {"duration_ms": (time.perf_counter() - started) * 1000.0},
            )

    def close(self) -> None:
        """
        Release every resource and mark the module closed.

        All releases are attempted even when one fails; the first failure
        is raised after the module has been marked closed.
        """
        with self._lifecycle_lock:
            if self._state is not ModuleState.INITIALIZED:
                return

            self._emit_event("close.start")
            failures: List[RAGError] = []
            releases = (
                (self._embedding, ErrorKind.MODEL_LOAD_FAILED),
                (self._vectors, ErrorKind.DATABASE_CONNECTION_FAILED),
                (self._documents, ErrorKind.DATABASE_CONNECTION_FAILED),
            )
            for resource, kind in releases:
                if resource is None:
                    continue
                try:
                    resource.close()
                except Exception as exc:
                    failure = wrap_error(exc, kind, f"close {type(resource).__name__}")
                    LOGGER.error("Error while closing RAG module: %s", failure)
                    failures.append(failure)

            self._state = ModuleState.CLOSED
            if failures:
                self._emit_event(
                    "close.error",
                    {"error": str(failures[0]), "failure_count": len(failures)},
                )
                raise failures[0]
            LOGGER.info("RAG module closed")
            self._emit_event("close.complete")

    def __enter__(self) -> "RAGModule":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------ #
    # Vector operations
    # ------------------------------------------------------------------ #

    def embed(self, request: EmbedRequest | Mapping[str, Any]) -> List[float]:
        """Return the embedding of ``request.text`` without touching storage."""
        self._require_initialized()
        request = coerce_request(EmbedRequest, request)
        text = _clean_text(request.text, "text")

        with self._operation(
            "embed",
            ErrorKind.EMBEDDING_FAILED,
            "generate embedding",
            text_length=len(text),
        ):
            vector = self._embed(text)
        return vector

    def save(self, request: SaveRequest | Mapping[str, Any]) -> bool:
        """
        Embed ``request.text`` and store it under ``request.id``.

        Creates the collection on first use and replaces any vector already
        stored under the id. Returns the vector store's success flag.
        """
        self._require_initialized()
        request = coerce_request(SaveRequest, request)
        text = _clean_text(request.text, "text")
        record_id = validate_id(request.id)
        tablename = validate_table_name(request.tablename)

        with self._operation(
            "save",
            ErrorKind.VECTOR_SAVE_FAILED,
            "save vector",
            tablename=tablename,
            id=record_id,
        ):
            vector = self._embed(text)
            self._vectors.create_collection_if_not_exists(tablename)
            saved = self._vectors.upsert(tablename, record_id, vector)
        if not saved:
            LOGGER.warning("Vector store did not save id %s in %s", record_id, tablename)
        return saved

    def search(self, request: SearchRequest | Mapping[str, Any]) -> List[int]:
        """Return up to ``request.qty`` ids, most similar first."""
        self._require_initialized()
        request = coerce_request(SearchRequest, request)
        text = _clean_text(request.text, "search text")
        tablename = validate_table_name(request.tablename)
        qty = validate_search_quantity(request.qty)

        with self._operation(
            "search",
            ErrorKind.SEARCH_FAILED,
            "search vectors",
            tablename=tablename,
            qty=qty,
        ):
            vector = self._embed(text)
            ids = list(self._vectors.similarity_search(tablename, vector, qty))
        return ids

    # ------------------------------------------------------------------ #
    # Document operations
    # ------------------------------------------------------------------ #

    def save_document(self, request: SaveDocumentRequest | Mapping[str, Any]) -> int:
        """
        Store a document row and its vector; returns the generated id.

        The row is inserted first and its id reused for the vector. If the
        vector cannot be stored the row is deleted again before the error
        is raised.
        """
        self._require_initialized()
        store = self._require_document_store()
        request = coerce_request(SaveDocumentRequest, request)
        content = _clean_text(request.content, "document content")
        tablename = validate_table_name(request.tablename)
        title = _clean_title(request.title)
        metadata = validate_metadata(request.metadata)

        with self._operation(
            "save_document",
            ErrorKind.VECTOR_SAVE_FAILED,
            "save document",
            tablename=tablename,
        ):
            vector = self._embed(content)
            store.create_table_if_not_exists(tablename)
            document_id = store.insert(
                tablename, {"title": title, "content": content, "metadata": metadata}
            )
            try:
                self._vectors.create_collection_if_not_exists(tablename)
                if not self._vectors.upsert(tablename, document_id, vector):
                    raise RAGError(
                        f"Vector store did not save document {document_id}",
                        ErrorKind.VECTOR_SAVE_FAILED,
                    )
            except Exception:
                self._discard_document(store, tablename, document_id)
                raise
        LOGGER.info("Document %s saved to %s", document_id, tablename)
        return document_id

    def search_documents(
        self, request: HybridSearchRequest | Mapping[str, Any]
    ) -> List[SearchResult]:
        """
        Return the documents most similar to ``request.text``.

        Results follow the similarity ordering; ``rank`` 0 is the closest.
        Vectors whose row no longer exists are skipped.
        """
        self._require_initialized()
        store = self._require_document_store()
        request = coerce_request(HybridSearchRequest, request)
        text = _clean_text(request.text, "search text")
        tablename = validate_table_name(request.tablename)
        qty = validate_search_quantity(request.qty)
        include_content = _require_flag(request.include_content, "include_content")
        include_metadata = _require_flag(request.include_metadata, "include_metadata")

        with self._operation(
            "search_documents",
            ErrorKind.SEARCH_FAILED,
            "search documents",
            tablename=tablename,
            qty=qty,
        ):
            vector = self._embed(text)
            ids = list(self._vectors.similarity_search(tablename, vector, qty))
            if not ids:
                return []
            records = {record.id: record for record in store.get_by_ids(tablename, ids)}

        results: List[SearchResult] = []
        for record_id in ids:
            record = records.get(record_id)
            if record is None:
                LOGGER.debug("Skipping vector %s in %s without a document row", record_id, tablename)
                continue
            results.append(
                SearchResult(
                    id=record.id,
                    rank=len(results),
                    content=record.content if include_content else None,
                    title=record.title,
                    metadata=record.metadata if include_metadata else None,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )
        return results

    def update_document(self, tablename: str, id: int, updates: Mapping[str, Any]) -> bool:
        """
        Update ``title``, ``content`` and/or ``metadata`` of a document.

        The vector is recomputed only when ``content`` is among the updates,
        and a vector the store does not save raises ``VECTOR_SAVE_FAILED``.
        Returns whether the row existed; an empty update returns False.
        """
        self._require_initialized()
        store = self._require_document_store()
        tablename = validate_table_name(tablename)
        record_id = validate_id(id)
        if not isinstance(updates, Mapping):
            raise invalid_input("Updates must be a mapping")
        unknown = sorted(set(updates) - set(UPDATABLE_DOCUMENT_FIELDS))
        if unknown:
            raise invalid_input(f"Cannot update document field(s): {', '.join(map(str, unknown))}")

        fields: Dict[str, Any] = {}
        if "title" in updates:
            fields["title"] = _clean_title(updates["title"])
        if "content" in updates:
            fields["content"] = _clean_text(updates["content"], "document content")
        if "metadata" in updates:
            fields["metadata"] = validate_metadata(updates["metadata"])
        if not fields:
            return False

        with self._operation(
            "update_document",
            ErrorKind.VECTOR_SAVE_FAILED,
            "update document",
            tablename=tablename,
            id=record_id,
        ):
            vector = self._embed(fields["content"]) if "content" in fields else None
            updated = store.update(tablename, record_id, fields)
            if updated and vector is not None:
                self._vectors.create_collection_if_not_exists(tablename)
                if not self._vectors.upsert(tablename, record_id, vector):
                    raise RAGError(
                        f"Vector store did not save updated document {record_id}",
                        ErrorKind.VECTOR_SAVE_FAILED,
                    )
        return updated

    def delete_document(self, tablename: str, id: int) -> bool:
        """Delete a document row and its vector; returns whether the row existed."""
        self._require_initialized()
        store = self._require_document_store()
        tablename = validate_table_name(tablename)
        record_id = validate_id(id)

        with self._operation(
            "delete_document",
            ErrorKind.VECTOR_SAVE_FAILED,
            "delete document",
            tablename=tablename,
            id=record_id,
        ):
            deleted = store.delete(tablename, record_id)
            self._vectors.delete(tablename, record_id)
        return deleted

    def get_document(self, tablename: str, id: int) -> Optional[DocumentRecord]:
        self._require_initialized()
        store = self._require_document_store()
        tablename = validate_table_name(tablename)
        record_id = validate_id(id)

        with self._operation(
            "get_document",
            ErrorKind.SEARCH_FAILED,
            "get document",
            tablename=tablename,
            id=record_id,
        ):
            return store.get(tablename, record_id)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _require_initialized(self) -> None:
        if self._state is not ModuleState.INITIALIZED:
            raise invalid_input("RAG module not initialized")

    def _embed(self, text: str) -> List[float]:
        """Embed ``text`` and reject vectors that must not reach a store."""
        vector = self._embedding.embed(text)
        try:
            checked = validate_vector(vector)
        except RAGError as exc:
            raise RAGError(
                f"Embedding engine returned an invalid vector: {exc.message}",
                ErrorKind.EMBEDDING_FAILED,
                exc,
            ) from exc
        expected = self._embedding.dimensions
        if expected is not None and len(checked) != expected:
            raise RAGError(
                f"Embedding engine returned {len(checked)} dimensions, expected {expected}",
                ErrorKind.EMBEDDING_FAILED,
            )
        return checked

    def _require_document_store(self) -> DocumentStore:
        if self._documents is None:
            raise invalid_input("Document store not configured for this RAG module")
        return self._documents

    def _discard_document(self, store: DocumentStore, tablename: str, document_id: int) -> None:
        try:
            store.delete(tablename, document_id)
        except Exception:
            LOGGER.error(
                "Failed to remove document %s from %s after its vector could not be saved",
                document_id,
                tablename,
                exc_info=True,
            )
        else:
            LOGGER.warning(
                "Removed document %s from %s after its vector could not be saved",
                document_id,
                tablename,
            )

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._recorder.record(name=name, payload=payload or {})

    @contextmanager
    def _operation(self, name: str, kind: ErrorKind, action: str, **payload: Any) -> Iterator[None]:
        """Record start/complete/error events and wrap foreign errors as ``kind``."""
        self._emit_event(f"{name}.start", payload)
        started = time.perf_counter()
        try:
            with translate_errors(kind, action):
                yield
        except RAGError as exc:
            LOGGER.error("%s operation failed: %s", name, exc)
            self._emit_event(
                f"{name}.error",
                {**payload, "error": exc.message, "kind": exc.kind.value},
            )
            raise
        self._emit_event(
            f"{name}.complete",
            {**payload, "duration_ms": (time.perf_counter() - started) * 1000.0},
        )


__all__ = ["RAGModule"]
