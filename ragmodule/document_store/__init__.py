"""Relational document stores for hybrid retrieval."""

from ragmodule.document_store.base import DocumentStore
from ragmodule.document_store.sql import SQLDocumentStore, build_document_table

__all__ = ["DocumentStore", "SQLDocumentStore", "build_document_table"]
