"""
EmbeddingEngine: abstract base class for text embedding backends.

An engine turns a non-empty string into a fixed-length vector of floats.
The dimension is fixed by the loaded model and exposed as ``dimensions``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class EmbeddingEngine(ABC):
    """
    Interface every embedding backend implements.

    Example:
        >>> engine = SentenceTransformerEmbedder()
        >>> engine.initialize("all-MiniLM-L6-v2")
        >>> vector = engine.embed("Hello world")
        >>> len(vector) == engine.dimensions
        True
        >>> engine.close()
    """

    @abstractmethod
    def initialize(self, model_path: str) -> None:
        """
        Load the model at ``model_path``.

        Calling this again with the same path is a no-op. Raises
        ``RAGError(MODEL_LOAD_FAILED)`` when the model cannot be loaded.
        """

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Return the embedding of ``text``.

        Raises ``RAGError(MODEL_LOAD_FAILED)`` before initialization,
        ``RAGError(INVALID_INPUT)`` for empty text and
        ``RAGError(EMBEDDING_FAILED)`` when the model fails.
        """

    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    @property
    @abstractmethod
    def dimensions(self) -> Optional[int]:
        """Vector length produced by the loaded model, None before initialization."""

    @property
    def model_path(self) -> Optional[str]:
        return None

    @abstractmethod
    def close(self) -> None:
        """Release the model. Safe to call when not initialized."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
