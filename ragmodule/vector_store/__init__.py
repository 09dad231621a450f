"""Vector store backends."""

from ragmodule.vector_store.base import VectorStore
from ragmodule.vector_store.chroma import ChromaVectorStore, collection_name_for
from ragmodule.vector_store.memory import InMemoryVectorStore

__all__ = [
    "ChromaVectorStore",
    "InMemoryVectorStore",
    "VectorStore",
    "collection_name_for",
]
