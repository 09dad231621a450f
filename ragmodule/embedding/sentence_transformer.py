"""
Local embeddings with sentence-transformers.

Loaded models are held by a process-wide :class:`ModelRegistry` keyed by
``(model_path, device)``. Every :class:`SentenceTransformerEmbedder` that
initializes with the same key shares one model instance; the model is
dropped when the last holder closes.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

try:
    from sentence_transformers import SentenceTransformer
    _SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    _SENTENCE_TRANSFORMERS_AVAILABLE = False

from ragmodule.embedding.base import EmbeddingEngine
from ragmodule.errors import ErrorKind, RAGError, invalid_input
from ragmodule.observability import EventRecorder, get_event_recorder

LOGGER = logging.getLogger(__name__)

ModelKey = Tuple[str, Optional[str]]


def _load_sentence_transformer(model_path: str, device: Optional[str]) -> Any:
    if not _SENTENCE_TRANSFORMERS_AVAILABLE:
        raise ImportError(
            "sentence-transformers is required for SentenceTransformerEmbedder. "
            "Install it with: pip install sentence-transformers"
        )
    return SentenceTransformer(model_path, device=device)


class ModelRegistry:
    """Reference-counted owner of loaded sentence-transformers models."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._models: Dict[ModelKey, Any] = {}
        self._refcounts: Dict[ModelKey, int] = {}

    def acquire(self, model_path: str, device: Optional[str] = None) -> Any:
        """Return the shared model for the key, loading it on first use."""
        key = (model_path, device)
        with self._lock:
            model = self._models.get(key)
            if model is None:
                LOGGER.info("Loading embedding model %s (device=%s)", model_path, device)
                model = _load_sentence_transformer(model_path, device)
                self._models[key] = model
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return model

    def release(self, model_path: str, device: Optional[str] = None) -> None:
        key = (model_path, device)
        with self._lock:
            count = self._refcounts.get(key)
            if count is None:
                return
            if count <= 1:
                del self._refcounts[key]
                del self._models[key]
                LOGGER.info("Released embedding model %s", model_path)
            else:
                self._refcounts[key] = count - 1

    def refcount(self, model_path: str, device: Optional[str] = None) -> int:
        with self._lock:
            return self._refcounts.get((model_path, device), 0)

    def clear(self) -> None:
        with self._lock:
            self._models.clear()
            self._refcounts.clear()


_DEFAULT_REGISTRY = ModelRegistry()


def get_model_registry() -> ModelRegistry:
    return _DEFAULT_REGISTRY


class SentenceTransformerEmbedder(EmbeddingEngine):
    """
    EmbeddingEngine backed by ``sentence_transformers.SentenceTransformer``.

    Args:
        device: Optional torch device (``"cpu"``, ``"cuda"``); None lets
            sentence-transformers pick.
        normalize_embeddings: L2-normalize vectors, which makes cosine and
            dot-product rankings agree.
        registry: Model owner; defaults to the process-wide registry.
        recorder: Event recorder; defaults to the global ``rag.embedding`` scope.
    """

    def __init__(
        self,
        device: Optional[str] = None,
        normalize_embeddings: bool = True,
        registry: Optional[ModelRegistry] = None,
        recorder: Optional[EventRecorder] = None,
    ) -> None:
        self._device = device
        self._normalize = normalize_embeddings
        self._registry = registry or get_model_registry()
        self._recorder = recorder or get_event_recorder("rag.embedding")
        self._model: Any = None
        self._model_path: Optional[str] = None
        self._dimensions: Optional[int] = None

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        base_payload: Dict[str, Any] = {
            "model_path": self._model_path,
            "device": self._device,
        }
        if payload:
            base_payload.update(payload)
        self._recorder.record(name=name, payload=base_payload)

    @property
    def model_path(self) -> Optional[str]:
        return self._model_path

    @property
    def dimensions(self) -> Optional[int]:
        return self._dimensions

    def is_initialized(self) -> bool:
        return self._model is not None

    def initialize(self, model_path: str) -> None:
        if self._model is not None and self._model_path == model_path:
            return
        if self._model is not None:
            self.close()

        self._emit_event("initialize.start", {"model_path": model_path})
        started = time.perf_counter()
        try:
            model = self._registry.acquire(model_path, self._device)
        except Exception as exc:
            self._emit_event(
                "initialize.error", {"model_path": model_path, "error": str(exc)}
            )
            raise RAGError(
                f"Failed to initialize embedding model: {exc}",
                ErrorKind.MODEL_LOAD_FAILED,
                exc,
            ) from exc

        self._model = model
        self._model_path = model_path
        try:
            self._dimensions = model.get_sentence_embedding_dimension()
        except Exception:
            LOGGER.debug("Model %s does not report its dimension", model_path)
            self._dimensions = None
        self._emit_event(
            "initialize.complete",
            {
                "dimensions": self._dimensions,
                "duration_ms": (time.perf_counter() - started) * 1000.0,
            },
        )

    def embed(self, text: str) -> List[float]:
        if self._model is None:
            raise RAGError("Embedding service not initialized", ErrorKind.MODEL_LOAD_FAILED)
        if not isinstance(text, str) or not text.strip():
            raise invalid_input("Text input cannot be empty")

        try:
            encoded = self._model.encode(
                text,
                convert_to_numpy=True,
                normalize_embeddings=self._normalize,
                show_progress_bar=False,
            )
            vector = [float(value) for value in encoded.tolist()]
        except Exception as exc:
            self._emit_event("embed.error", {"error": str(exc)})
            raise RAGError(
                f"Failed to generate embedding: {exc}",
                ErrorKind.EMBEDDING_FAILED,
                exc,
            ) from exc

        if self._dimensions is None:
            self._dimensions = len(vector)
        return vector

    def close(self) -> None:
        if self._model is None:
            return
        model_path = self._model_path
        self._model = None
        self._model_path = None
        self._dimensions = None
        try:
            self._registry.release(model_path, self._device)
        except Exception as exc:
            raise RAGError(
                f"Failed to close embedding service: {exc}",
                ErrorKind.MODEL_LOAD_FAILED,
                exc,
            ) from exc
        self._emit_event("close.complete", {"model_path": model_path})
