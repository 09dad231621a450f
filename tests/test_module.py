"""Tests for the RAGModule lifecycle and the embed/save/search operations."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from ragmodule.configuration import RAGConfig
from ragmodule.errors import ErrorKind, RAGError
from ragmodule.module import RAGModule
from ragmodule.types import EmbedRequest, ModuleState, SaveRequest, SearchRequest
from ragmodule.vector_store import InMemoryVectorStore
from tests.fixtures.fakes import FAKE_DIMENSIONS, FakeEmbeddingEngine, bag_of_words_vector


def _assert_kind(excinfo, kind: ErrorKind) -> None:
    assert excinfo.value.kind is kind, excinfo.value


# ========== Lifecycle ==========

def test_new_module_is_uninitialized(rag) -> None:
    assert rag.state is ModuleState.UNINITIALIZED
    assert not rag.is_initialized
    assert not rag.has_document_store


def test_initialize_opens_engine_then_store(rag, embedding_engine, vector_store) -> None:
    rag.initialize()

    assert rag.state is ModuleState.INITIALIZED
    assert embedding_engine.initialize_calls == ["fake-model"]
    vector_store.initialize.assert_called_once_with(":memory:")


def test_initialize_twice_is_noop(rag, embedding_engine, vector_store) -> None:
    rag.initialize()
    rag.initialize()

    assert embedding_engine.initialize_calls == ["fake-model"]
    assert vector_store.initialize.call_count == 1


def test_close_twice_is_noop(rag, embedding_engine, vector_store) -> None:
    rag.initialize()

    rag.close()
    rag.close()

    assert rag.state is ModuleState.CLOSED
    assert embedding_engine.close_calls == 1
    assert vector_store.close.call_count == 1


def test_close_before_initialize_is_noop(rag, embedding_engine, vector_store) -> None:
    rag.close()

    assert rag.state is ModuleState.UNINITIALIZED
    assert embedding_engine.close_calls == 0
    vector_store.close.assert_not_called()


def test_closed_module_cannot_be_reinitialized(rag) -> None:
    rag.initialize()
    rag.close()

    with pytest.raises(RAGError) as excinfo:
        rag.initialize()

    _assert_kind(excinfo, ErrorKind.INVALID_INPUT)
    assert rag.state is ModuleState.CLOSED


def test_engine_failure_keeps_module_uninitialized(vector_store, recorder) -> None:
    engine = FakeEmbeddingEngine(init_error=RuntimeError("corrupt weights"))
    module = RAGModule({"storage_path": ":memory:"}, embedding_engine=engine, vector_store=vector_store, recorder=recorder)

    with pytest.raises(RAGError) as excinfo:
        module.initialize()

    _assert_kind(excinfo, ErrorKind.MODEL_LOAD_FAILED)
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert module.state is ModuleState.UNINITIALIZED
    vector_store.initialize.assert_not_called()


def test_store_failure_releases_engine(embedding_engine, recorder) -> None:
    store = MagicMock(wraps=InMemoryVectorStore())
    store.initialize.side_effect = RAGError("cannot open", ErrorKind.DATABASE_CONNECTION_FAILED)
    module = RAGModule({"storage_path": ":memory:"}, embedding_engine=embedding_engine, vector_store=store, recorder=recorder)

    with pytest.raises(RAGError) as excinfo:
        module.initialize()

    _assert_kind(excinfo, ErrorKind.DATABASE_CONNECTION_FAILED)
    assert excinfo.value.message == "cannot open"
    assert embedding_engine.close_calls == 1
    assert not embedding_engine.is_initialized()
    assert module.state is ModuleState.UNINITIALIZED


def test_initialize_can_be_retried_after_failure(vector_store, recorder) -> None:
    engine = FakeEmbeddingEngine(init_error=RuntimeError("transient"))
    module = RAGModule({"storage_path": ":memory:"}, embedding_engine=engine, vector_store=vector_store, recorder=recorder)
    with pytest.raises(RAGError):
        module.initialize()

    engine.init_error = None
    module.initialize()

    assert module.is_initialized


def test_close_attempts_every_release_and_raises_first_failure(vector_store, recorder) -> None:
    engine = FakeEmbeddingEngine(close_error=RuntimeError("context busy"))
    module = RAGModule({"storage_path": ":memory:"}, embedding_engine=engine, vector_store=vector_store, recorder=recorder)
    module.initialize()

    with pytest.raises(RAGError) as excinfo:
        module.close()

    _assert_kind(excinfo, ErrorKind.MODEL_LOAD_FAILED)
    vector_store.close.assert_called_once()
    assert module.state is ModuleState.CLOSED


def test_vector_store_close_failure_is_connection_failed(embedding_engine, recorder) -> None:
    store = MagicMock(wraps=InMemoryVectorStore())
    store.close.side_effect = OSError("flush failed")
    module = RAGModule({"storage_path": ":memory:"}, embedding_engine=embedding_engine, vector_store=store, recorder=recorder)
    module.initialize()

    with pytest.raises(RAGError) as excinfo:
        module.close()

    _assert_kind(excinfo, ErrorKind.DATABASE_CONNECTION_FAILED)
    assert embedding_engine.close_calls == 1


def test_concurrent_initialize_loads_engine_once(vector_store, recorder) -> None:
    class SlowEngine(FakeEmbeddingEngine):
        def initialize(self, model_path: str) -> None:
            time.sleep(0.05)
            super().initialize(model_path)

    engine = SlowEngine()
    module = RAGModule({"model_path": "fake-model", "storage_path": ":memory:"}, embedding_engine=engine, vector_store=vector_store, recorder=recorder)
    barrier = threading.Barrier(6)

    def worker() -> None:
        barrier.wait()
        module.initialize()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert engine.initialize_calls == ["fake-model"]
    assert module.is_initialized
    module.close()


def test_context_manager_initializes_and_closes(embedding_engine, vector_store, recorder) -> None:
    with RAGModule({"storage_path": ":memory:"}, embedding_engine=embedding_engine, vector_store=vector_store, recorder=recorder) as module:
        assert module.is_initialized

    assert module.state is ModuleState.CLOSED
    assert embedding_engine.close_calls == 1


def test_lifecycle_events_are_recorded(rag, events) -> None:
    rag.initialize()
    rag.close()

    names = [(event.service, event.name) for event in events if event.service == "rag.module"]
    assert names == [
        ("rag.module", "initialize.start"),
        ("rag.module", "initialize.complete"),
        ("rag.module", "close.start"),
        ("rag.module", "close.complete"),
    ]


def test_config_log_level_is_applied(embedding_engine, vector_store) -> None:
    import logging

    logger = logging.getLogger("ragmodule")
    previous = logger.level
    try:
        RAGModule({"log_level": "error"}, embedding_engine=embedding_engine, vector_store=vector_store)
        assert logger.level == logging.ERROR
    finally:
        logger.setLevel(previous)


def test_default_log_level_leaves_shared_logger_alone(embedding_engine, vector_store) -> None:
    import logging

    logger = logging.getLogger("ragmodule")
    previous = logger.level
    try:
        RAGModule({"log_level": "debug"}, embedding_engine=embedding_engine, vector_store=vector_store)
        RAGModule({"storage_path": ":memory:"}, embedding_engine=embedding_engine, vector_store=vector_store)
        assert logger.level == logging.DEBUG
    finally:
        logger.setLevel(previous)


# ========== Initialized gate ==========

@pytest.mark.parametrize(
    "call",
    [
        lambda rag: rag.embed({"text": "hello"}),
        lambda rag: rag.save({"id": 1, "text": "hello", "tablename": "docs"}),
        lambda rag: rag.search({"text": "hello", "tablename": "docs", "qty": 1}),
        lambda rag: rag.embed({"text": ""}),
        lambda rag: rag.save({"id": -5, "text": "", "tablename": "select"}),
        lambda rag: rag.save_document({"content": "x", "tablename": "docs"}),
        lambda rag: rag.search_documents({"text": "x", "tablename": "docs", "qty": 1}),
        lambda rag: rag.update_document("docs", 1, {"title": "x"}),
        lambda rag: rag.delete_document("docs", 1),
        lambda rag: rag.get_document("docs", 1),
    ],
)
def test_operations_require_initialization(rag, embedding_engine, vector_store, call) -> None:
    with pytest.raises(RAGError) as excinfo:
        call(rag)

    _assert_kind(excinfo, ErrorKind.INVALID_INPUT)
    assert "module not initialized" in excinfo.value.message
    assert embedding_engine.embed_calls == []
    vector_store.create_collection_if_not_exists.assert_not_called()


def test_operations_after_close_are_rejected(rag) -> None:
    rag.initialize()
    rag.close()

    with pytest.raises(RAGError) as excinfo:
        rag.embed(EmbedRequest(text="hello"))

    assert "module not initialized" in excinfo.value.message


# ========== embed ==========

def test_embed_returns_vector_without_storage_side_effects(rag, vector_store) -> None:
    rag.initialize()

    vector = rag.embed(EmbedRequest(text="x"))

    assert vector == bag_of_words_vector("x")
    assert len(vector) == FAKE_DIMENSIONS
    vector_store.create_collection_if_not_exists.assert_not_called()
    vector_store.upsert.assert_not_called()
    vector_store.similarity_search.assert_not_called()


def test_embed_sanitizes_and_trims_text(rag, embedding_engine) -> None:
    rag.initialize()

    rag.embed({"text": "  hello\x00 world\x07  "})

    assert embedding_engine.embed_calls == ["hello world"]


@pytest.mark.parametrize("text", ["", "   ", "\x00\x01", 5, None])
def test_embed_rejects_invalid_text(rag, embedding_engine, text) -> None:
    rag.initialize()

    with pytest.raises(RAGError) as excinfo:
        rag.embed({"text": text})

    _assert_kind(excinfo, ErrorKind.INVALID_INPUT)
    assert embedding_engine.embed_calls == []


def test_embed_wraps_foreign_engine_failures(rag, embedding_engine) -> None:
    rag.initialize()
    embedding_engine.embed_error = RuntimeError("segfault in kernel")

    with pytest.raises(RAGError) as excinfo:
        rag.embed({"text": "hello"})

    _assert_kind(excinfo, ErrorKind.EMBEDDING_FAILED)
    assert isinstance(excinfo.value.cause, RuntimeError)


def test_request_mappings_with_unknown_keys_are_rejected(rag) -> None:
    rag.initialize()

    with pytest.raises(RAGError) as excinfo:
        rag.embed({"text": "hello", "model": "other"})

    _assert_kind(excinfo, ErrorKind.INVALID_INPUT)

    with pytest.raises(RAGError):
        rag.save({"text": "hello", "tablename": "docs"})
    with pytest.raises(RAGError):
        rag.search(["hello", "docs", 1])


# ========== Embedding output checks ==========

@pytest.mark.parametrize(
    "bad_vector",
    [
        [float("nan")] * FAKE_DIMENSIONS,
        [float("inf")] + [0.0] * (FAKE_DIMENSIONS - 1),
        [],
        [0.5] * (FAKE_DIMENSIONS - 1),
    ],
)
def test_invalid_engine_output_never_reaches_the_store(rag, embedding_engine, vector_store, mocker, bad_vector) -> None:
    rag.initialize()
    mocker.patch.object(embedding_engine, "embed", return_value=bad_vector)

    with pytest.raises(RAGError) as save_error:
        rag.save({"id": 1, "text": "a", "tablename": "docs"})
    with pytest.raises(RAGError) as search_error:
        rag.search({"text": "a", "tablename": "docs", "qty": 1})
    with pytest.raises(RAGError) as embed_error:
        rag.embed({"text": "a"})

    for excinfo in (save_error, search_error, embed_error):
        _assert_kind(excinfo, ErrorKind.EMBEDDING_FAILED)
    vector_store.upsert.assert_not_called()
    vector_store.similarity_search.assert_not_called()


def test_numpy_engine_output_is_returned_as_floats(rag, embedding_engine, mocker) -> None:
    import numpy as np

    rag.initialize()
    mocker.patch.object(
        embedding_engine, "embed", return_value=np.ones(FAKE_DIMENSIONS, dtype=np.float32)
    )

    vector = rag.embed({"text": "a"})

    assert vector == [1.0] * FAKE_DIMENSIONS
    assert all(type(value) is float for value in vector)


# ========== save / search ==========

def test_save_then_search_round_trip(rag) -> None:
    rag.initialize()

    assert rag.save({"id": 1, "text": "a", "tablename": "t"}) is True
    assert rag.search({"text": "a", "tablename": "t", "qty": 1}) == [1]


def test_search_ranks_by_similarity(rag) -> None:
    rag.initialize()
    rag.save(SaveRequest(id=1, text="cats purr softly", tablename="notes"))
    rag.save(SaveRequest(id=2, text="stock markets fell", tablename="notes"))
    rag.save(SaveRequest(id=3, text="cats sleep softly all day", tablename="notes"))

    result = rag.search(SearchRequest(text="cats purr softly", tablename="notes", qty=2))

    assert result[0] == 1
    assert len(result) == 2


def test_save_validates_everything_before_calling_collaborators(rag, embedding_engine, vector_store) -> None:
    rag.initialize()

    for request in (
        {"id": 1, "text": "", "tablename": "docs"},
        {"id": -1, "text": "hello", "tablename": "docs"},
        {"id": 1.5, "text": "hello", "tablename": "docs"},
        {"id": 1, "text": "hello", "tablename": "drop"},
        {"id": 1, "text": "hello", "tablename": "9lives"},
    ):
        with pytest.raises(RAGError) as excinfo:
            rag.save(request)
        _assert_kind(excinfo, ErrorKind.INVALID_INPUT)

    assert embedding_engine.embed_calls == []
    vector_store.create_collection_if_not_exists.assert_not_called()
    vector_store.upsert.assert_not_called()


def test_save_validates_text_before_id_and_table(rag) -> None:
    rag.initialize()

    with pytest.raises(RAGError) as excinfo:
        rag.save({"id": -1, "text": "", "tablename": "select"})

    assert excinfo.value.message.startswith("text")


def test_save_creates_collection_and_upserts(rag, vector_store) -> None:
    rag.initialize()

    rag.save({"id": 7, "text": "hello", "tablename": "  docs  "})

    vector_store.create_collection_if_not_exists.assert_called_once_with("docs")
    vector_store.upsert.assert_called_once_with("docs", 7, bag_of_words_vector("hello"))


def test_save_accepts_integral_float_id(rag, vector_store) -> None:
    rag.initialize()

    rag.save({"id": 3.0, "text": "hello", "tablename": "docs"})

    assert vector_store.upsert.call_args.args[1] == 3
    assert type(vector_store.upsert.call_args.args[1]) is int


def test_save_same_id_replaces_vector(rag) -> None:
    rag.initialize()
    rag.save({"id": 1, "text": "apples oranges", "tablename": "docs"})
    rag.save({"id": 2, "text": "bananas", "tablename": "docs"})

    rag.save({"id": 1, "text": "bananas", "tablename": "docs"})

    assert sorted(rag.search({"text": "bananas", "tablename": "docs", "qty": 10})) == [1, 2]
    assert rag.search({"text": "apples oranges", "tablename": "docs", "qty": 10})[0] in (1, 2)


def test_save_returns_store_flag_unchanged(rag, vector_store) -> None:
    rag.initialize()
    vector_store.upsert.return_value = False

    assert rag.save({"id": 1, "text": "hello", "tablename": "docs"}) is False


def test_save_wraps_foreign_store_failures(rag, vector_store) -> None:
    rag.initialize()
    vector_store.upsert.side_effect = OSError("disk full")

    with pytest.raises(RAGError) as excinfo:
        rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    _assert_kind(excinfo, ErrorKind.VECTOR_SAVE_FAILED)
    assert "disk full" in excinfo.value.message


def test_store_taxonomy_errors_pass_through(rag, vector_store) -> None:
    rag.initialize()
    original = RAGError("cannot create", ErrorKind.TABLE_CREATION_FAILED)
    vector_store.create_collection_if_not_exists.side_effect = original

    with pytest.raises(RAGError) as excinfo:
        rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    assert excinfo.value is original


@pytest.mark.parametrize("operation", ["embed", "save", "search"])
def test_embedding_errors_are_not_rewrapped(rag, embedding_engine, operation) -> None:
    rag.initialize()
    original = RAGError("Failed to generate embedding: boom", ErrorKind.EMBEDDING_FAILED)
    embedding_engine.embed_error = original
    requests = {
        "embed": {"text": "hello"},
        "save": {"id": 1, "text": "hello", "tablename": "docs"},
        "search": {"text": "hello", "tablename": "docs", "qty": 1},
    }

    with pytest.raises(RAGError) as excinfo:
        getattr(rag, operation)(requests[operation])

    assert excinfo.value is original
    assert excinfo.value.kind is ErrorKind.EMBEDDING_FAILED


@pytest.mark.parametrize("qty", [0, -1, 5.5, 1001, True, "3"])
def test_search_rejects_out_of_bounds_quantity(rag, qty) -> None:
    rag.initialize()

    with pytest.raises(RAGError) as excinfo:
        rag.search({"text": "hello", "tablename": "docs", "qty": qty})

    _assert_kind(excinfo, ErrorKind.INVALID_INPUT)


@pytest.mark.parametrize("qty", [1, 1000])
def test_search_accepts_quantity_bounds(rag, qty) -> None:
    rag.initialize()
    rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    assert rag.search({"text": "hello", "tablename": "docs", "qty": qty}) == [1]


def test_search_missing_or_empty_collection_returns_empty(rag, vector_store) -> None:
    rag.initialize()

    assert rag.search({"text": "hello", "tablename": "nothing", "qty": 5}) == []
    vector_store.create_collection_if_not_exists("empty")
    assert rag.search({"text": "hello", "tablename": "empty", "qty": 5}) == []


def test_search_wraps_foreign_failures(rag, vector_store) -> None:
    rag.initialize()
    vector_store.similarity_search.side_effect = ValueError("index corrupted")

    with pytest.raises(RAGError) as excinfo:
        rag.search({"text": "hello", "tablename": "docs", "qty": 5})

    _assert_kind(excinfo, ErrorKind.SEARCH_FAILED)


def test_operation_failure_does_not_change_state(rag, vector_store) -> None:
    rag.initialize()
    vector_store.upsert.side_effect = OSError("disk full")

    with pytest.raises(RAGError):
        rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    assert rag.is_initialized


def test_operations_record_events(rag, events) -> None:
    rag.initialize()
    rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    module_events = [event.name for event in events if event.service == "rag.module"]
    assert "save.start" in module_events
    assert "save.complete" in module_events
    complete = next(event for event in events if event.name == "save.complete")
    assert complete.payload["tablename"] == "docs"
    assert complete.payload["duration_ms"] >= 0


def test_failed_operation_records_error_event(rag, vector_store, events) -> None:
    rag.initialize()
    vector_store.similarity_search.side_effect = ValueError("index corrupted")

    with pytest.raises(RAGError):
        rag.search({"text": "hello", "tablename": "docs", "qty": 5})

    error = next(event for event in events if event.name == "search.error")
    assert error.payload["kind"] == "SEARCH_FAILED"


def test_concurrent_saves_and_searches(rag) -> None:
    rag.initialize()
    errors = []

    def worker(offset: int) -> None:
        try:
            for n in range(10):
                rag.save({"id": offset * 100 + n, "text": f"note {offset} {n}", "tablename": "docs"})
                rag.search({"text": f"note {offset}", "tablename": "docs", "qty": 3})
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(rag.search({"text": "note", "tablename": "docs", "qty": 1000})) == 40


# ========== Introspection ==========

def test_model_and_database_info(rag) -> None:
    assert rag.model_info().is_loaded is False
    assert rag.database_info().is_connected is False

    rag.initialize()
    rag.save({"id": 1, "text": "hello", "tablename": "docs"})

    model = rag.model_info()
    database = rag.database_info()
    assert model.path == "fake-model"
    assert model.is_loaded is True
    assert model.dimensions == FAKE_DIMENSIONS
    assert database.path == ":memory:"
    assert database.is_connected is True
    assert database.tables == ("docs",)


def test_default_collaborators_follow_config() -> None:
    from ragmodule.embedding import SentenceTransformerEmbedder
    from ragmodule.vector_store import ChromaVectorStore

    module = RAGModule(RAGConfig(device="cpu", normalize_embeddings=False))

    assert isinstance(module._embedding, SentenceTransformerEmbedder)
    assert module._embedding._device == "cpu"
    assert module._embedding._normalize is False
    assert isinstance(module._vectors, ChromaVectorStore)
    assert module._documents is None
