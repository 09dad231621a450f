"""
SQLDocumentStore: SQLAlchemy implementation of DocumentStore.

One schema serves MySQL (``mysql+pymysql``), PostgreSQL
(``postgresql+psycopg2``) and SQLite. Tables are created on demand, one per
table name, with SQLAlchemy Core so that names are only known at runtime::

    store = SQLDocumentStore(RelationalSettings(dialect="sqlite", database="docs.db"))
    store.initialize()
    store.create_table_if_not_exists("articles")
    doc_id = store.insert("articles", {"content": "Hello", "metadata": {"lang": "en"}})
    store.get_by_ids("articles", [doc_id])
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    inspect,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ragmodule.configuration import RelationalSettings
from ragmodule.errors import ErrorKind, RAGError, translate_errors
from ragmodule.observability import EventRecorder, get_event_recorder
from ragmodule.types import DocumentRecord
from ragmodule.document_store.base import DocumentStore

LOGGER = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "content", "metadata"})


def build_document_table(name: str, metadata: MetaData) -> Table:
    """Declare the document table ``name`` on ``metadata``."""
    return Table(
        name,
        metadata,
        Column(
            "id",
            BigInteger().with_variant(Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        Column("title", String(255), nullable=True, index=True),
        Column("content", Text, nullable=False),
        Column(
            "metadata",
            JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
            nullable=True,
        ),
        Column("created_at", DateTime, server_default=func.now(), nullable=False),
        Column(
            "updated_at",
            DateTime,
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        ),
    )


def _record_from_row(row: Any) -> DocumentRecord:
    mapping = row._mapping
    return DocumentRecord(
        id=int(mapping["id"]),
        content=mapping["content"],
        title=mapping["title"],
        metadata=mapping["metadata"],
        created_at=mapping["created_at"],
        updated_at=mapping["updated_at"],
    )


class SQLDocumentStore(DocumentStore):
    """
    Document store over any SQLAlchemy-supported relational database.

    Args:
        settings: Connection settings, or a SQLAlchemy URL.
        engine_options: Extra keyword arguments for ``create_engine``.
        recorder: Event recorder; defaults to the global
            ``rag.document_store`` scope.
    """

    def __init__(
        self,
        settings: RelationalSettings | URL | str,
        *,
        engine_options: Optional[Dict[str, Any]] = None,
        recorder: Optional[EventRecorder] = None,
    ) -> None:
        if isinstance(settings, RelationalSettings):
            self._settings: Optional[RelationalSettings] = settings
            self._url = make_url(settings.sqlalchemy_url())
        else:
            self._settings = None
            self._url = make_url(settings)
        self._engine_options = dict(engine_options or {})
        self._recorder = recorder or get_event_recorder("rag.document_store")
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._created: set[str] = set()
        self._tables_lock = threading.Lock()

    @property
    def dialect(self) -> str:
        return self._url.get_backend_name()

    @property
    def description(self) -> str:
        return self._url.render_as_string(hide_password=True)

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        base_payload: Dict[str, Any] = {"dialect": self.dialect}
        if payload:
            base_payload.update(payload)
        self._recorder.record(name=name, payload=base_payload)

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
        connect_args: Dict[str, Any] = {}
        if self.dialect == "sqlite":
            if self._url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
            connect_args["check_same_thread"] = False
        elif self._settings is not None:
            kwargs["pool_size"] = self._settings.pool_size
            if self._settings.ssl:
                if self.dialect == "mysql":
                    connect_args["ssl"] = {"check_hostname": True}
                elif self.dialect == "postgresql":
                    connect_args["sslmode"] = "require"
        if connect_args:
            kwargs["connect_args"] = connect_args
        kwargs.update(self._engine_options)
        return kwargs

    def initialize(self) -> None:
        if self._engine is not None:
            return
        self._emit_event("initialize.start", {"url": self.description})
        engine = None
        try:
            engine = create_engine(self._url, **self._engine_kwargs())
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as exc:
            if engine is not None:
                engine.dispose()
            self._emit_event("initialize.error", {"url": self.description, "error": str(exc)})
            raise RAGError(
                f"Failed to connect to {self.dialect} database: {exc}",
                ErrorKind.DATABASE_CONNECTION_FAILED,
                exc,
            ) from exc
        self._engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False)
        LOGGER.info("Connected to document database %s", self.description)
        self._emit_event("initialize.complete", {"url": self.description})

    def is_initialized(self) -> bool:
        return self._engine is not None

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise RAGError(
                f"{self.dialect} database not initialized",
                ErrorKind.DATABASE_CONNECTION_FAILED,
            )
        return self._engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        self._require_engine()
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _table(self, name: str) -> Table:
        with self._tables_lock:
            table = self._tables.get(name)
            if table is None:
                table = build_document_table(name, self._metadata)
                self._tables[name] = table
            return table

    def _table_exists(self, name: str) -> bool:
        if name in self._created:
            return True
        if inspect(self._require_engine()).has_table(name):
            self._created.add(name)
            return True
        return False

    def create_table_if_not_exists(self, name: str) -> None:
        engine = self._require_engine()
        if name in self._created:
            return
        table = self._table(name)
        try:
            table.create(engine, checkfirst=True)
        except Exception as exc:
            self._emit_event("create_table.error", {"table": name, "error": str(exc)})
            raise RAGError(
                f"Failed to create table '{name}': {exc}",
                ErrorKind.TABLE_CREATION_FAILED,
                exc,
            ) from exc
        self._created.add(name)
        self._emit_event("create_table.complete", {"table": name})

    def insert(self, name: str, document: Mapping[str, Any]) -> int:
        table = self._table(name)
        values = {
            "title": document.get("title"),
            "content": document["content"],
            "metadata": document.get("metadata"),
        }
        with translate_errors(ErrorKind.VECTOR_SAVE_FAILED, f"insert document into '{name}'"):
            with self.session() as session:
                result = session.execute(table.insert().values(**values))
                document_id = int(result.inserted_primary_key[0])
        self._emit_event("insert.complete", {"table": name, "id": document_id})
        return document_id

    def get_by_ids(self, name: str, ids: Sequence[int]) -> List[DocumentRecord]:
        if not ids:
            return []
        with translate_errors(ErrorKind.SEARCH_FAILED, f"fetch documents from '{name}'"):
            if not self._table_exists(name):
                return []
            table = self._table(name)
            with self.session() as session:
                rows = session.execute(
                    select(table).where(table.c.id.in_([int(i) for i in ids]))
                ).all()
        by_id = {record.id: record for record in map(_record_from_row, rows)}
        return [by_id[int(i)] for i in ids if int(i) in by_id]

    def update(self, name: str, id: int, fields: Mapping[str, Any]) -> bool:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise RAGError(
                f"Cannot update document field(s): {', '.join(sorted(unknown))}",
                ErrorKind.INVALID_INPUT,
            )
        if not fields:
            return False
        with translate_errors(ErrorKind.VECTOR_SAVE_FAILED, f"update document {id} in '{name}'"):
            if not self._table_exists(name):
                return False
            table = self._table(name)
            with self.session() as session:
                result = session.execute(
                    update(table).where(table.c.id == int(id)).values(**dict(fields))
                )
                changed = result.rowcount > 0
        self._emit_event("update.complete", {"table": name, "id": id, "changed": changed})
        return changed

    def delete(self, name: str, id: int) -> bool:
        with translate_errors(ErrorKind.VECTOR_SAVE_FAILED, f"delete document {id} from '{name}'"):
            if not self._table_exists(name):
                return False
            table = self._table(name)
            with self.session() as session:
                result = session.execute(delete(table).where(table.c.id == int(id)))
                deleted = result.rowcount > 0
        self._emit_event("delete.complete", {"table": name, "id": id, "deleted": deleted})
        return deleted

    def list_tables(self) -> List[str]:
        with translate_errors(ErrorKind.SEARCH_FAILED, "list document tables"):
            return sorted(inspect(self._require_engine()).get_table_names())

    def close(self) -> None:
        if self._engine is None:
            return
        engine = self._engine
        self._engine = None
        self._session_factory = None
        with self._tables_lock:
            self._tables.clear()
            self._created.clear()
            self._metadata = MetaData()
        try:
            engine.dispose()
        except Exception as exc:
            raise RAGError(
                f"Failed to close {self.dialect} database: {exc}",
                ErrorKind.DATABASE_CONNECTION_FAILED,
                exc,
            ) from exc
        self._emit_event("close.complete")
