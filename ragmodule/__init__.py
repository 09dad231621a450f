"""
ragmodule: retrieval-augmented-generation helpers.

Embed text with a local sentence-transformers model, keep the vectors in a
Chroma collection and query them by semantic similarity. Hybrid modules
also keep full documents (title, content, JSON metadata) in MySQL,
PostgreSQL or SQLite.

Main Components:
- RAGModule: lifecycle plus embed/save/search and the document operations
- RAGConfig / RelationalSettings: configuration
- RAGError / ErrorKind: the single error shape raised by the library
- validation helpers used at every entry point

Example:
    >>> from ragmodule import RAGModule, SaveRequest, SearchRequest
    >>>
    >>> with RAGModule({"storage_path": "./vectors"}) as rag:
    ...     rag.save(SaveRequest(id=1, text="The cat sat on the mat", tablename="notes"))
    ...     rag.search(SearchRequest(text="feline on a rug", tablename="notes", qty=1))
    [1]
"""

from ragmodule.configuration import RAGConfig, RelationalSettings
from ragmodule.document_store import DocumentStore, SQLDocumentStore
from ragmodule.embedding import EmbeddingEngine, SentenceTransformerEmbedder
from ragmodule.errors import ErrorKind, RAGError
from ragmodule.module import RAGModule
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
)
from ragmodule.validation import (
    sanitize_text,
    validate_config,
    validate_id,
    validate_search_quantity,
    validate_table_name,
    validate_text,
    validate_vector,
)
from ragmodule.vector_store import ChromaVectorStore, InMemoryVectorStore, VectorStore

__version__ = "0.1.0"

__all__ = [
    "ChromaVectorStore",
    "DatabaseInfo",
    "DocumentRecord",
    "DocumentStore",
    "EmbedRequest",
    "EmbeddingEngine",
    "ErrorKind",
    "HybridSearchRequest",
    "InMemoryVectorStore",
    "ModelInfo",
    "ModuleState",
    "RAGConfig",
    "RAGError",
    "RAGModule",
    "RelationalSettings",
    "SQLDocumentStore",
    "SaveDocumentRequest",
    "SaveRequest",
    "SearchRequest",
    "SearchResult",
    "SentenceTransformerEmbedder",
    "VectorStore",
    "sanitize_text",
    "validate_config",
    "validate_id",
    "validate_search_quantity",
    "validate_table_name",
    "validate_text",
    "validate_vector",
]
