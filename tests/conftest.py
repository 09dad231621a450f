"""Pytest configuration and shared fixtures for ragmodule tests."""

from __future__ import annotations

from typing import List
from unittest.mock import MagicMock

import freezegun
import pytest

from ragmodule.configuration import RAGConfig, RelationalSettings
from ragmodule.document_store import SQLDocumentStore
from ragmodule.module import RAGModule
from ragmodule.observability import EventRecorder, ServiceEvent
from ragmodule.vector_store import InMemoryVectorStore
from tests.fixtures.fakes import FakeEmbeddingEngine


# freezegun walks every loaded module; transformers' lazy modules import
# optional (PIL-backed) submodules on dir(), so keep freezegun out of them.
freezegun.configure(extend_ignore_list=["transformers"])


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (downloads a real model)"
    )


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def events(recorder: EventRecorder) -> List[ServiceEvent]:
    """Every event recorded through the ``recorder`` fixture."""
    captured: List[ServiceEvent] = []
    recorder.register(captured.append)
    return captured


@pytest.fixture
def embedding_engine() -> FakeEmbeddingEngine:
    return FakeEmbeddingEngine()


@pytest.fixture
def vector_store(recorder: EventRecorder) -> MagicMock:
    """In-memory vector store wrapped in a MagicMock so calls can be asserted."""
    return MagicMock(wraps=InMemoryVectorStore(recorder=recorder.scoped("rag.vector_store")))


@pytest.fixture
def sqlite_settings(tmp_path) -> RelationalSettings:
    return RelationalSettings(dialect="sqlite", database=str(tmp_path / "documents.db"))


@pytest.fixture
def document_store(sqlite_settings, recorder: EventRecorder) -> SQLDocumentStore:
    return SQLDocumentStore(sqlite_settings, recorder=recorder.scoped("rag.document_store"))


@pytest.fixture
def rag(embedding_engine, vector_store, recorder) -> RAGModule:
    """Plain (vector only) module, not yet initialized."""
    module = RAGModule(
        RAGConfig(model_path="fake-model", storage_path=":memory:"),
        embedding_engine=embedding_engine,
        vector_store=vector_store,
        recorder=recorder,
    )
    yield module
    if module.is_initialized:
        module.close()


@pytest.fixture
def hybrid_rag(embedding_engine, vector_store, document_store, recorder) -> RAGModule:
    """Hybrid module over SQLite, already initialized."""
    module = RAGModule(
        RAGConfig(model_path="fake-model", storage_path=":memory:"),
        embedding_engine=embedding_engine,
        vector_store=vector_store,
        document_store=document_store,
        recorder=recorder,
    )
    module.initialize()
    yield module
    if module.is_initialized:
        module.close()
