"""Embedding engines."""

from ragmodule.embedding.base import EmbeddingEngine
from ragmodule.embedding.sentence_transformer import (
    ModelRegistry,
    SentenceTransformerEmbedder,
    get_model_registry,
)

__all__ = [
    "EmbeddingEngine",
    "ModelRegistry",
    "SentenceTransformerEmbedder",
    "get_model_registry",
]
