"""Request and record types exchanged with RAGModule callers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from ragmodule.errors import invalid_input

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]

R = TypeVar("R")


class ModuleState(str, Enum):
    """Lifecycle states of a RAGModule instance."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLOSED = "closed"


@dataclass
class EmbedRequest:
    text: str


@dataclass
class SaveRequest:
    id: int
    text: str
    tablename: str


@dataclass
class SearchRequest:
    text: str
    tablename: str
    qty: int


@dataclass
class SaveDocumentRequest:
    content: str
    tablename: str
    title: Optional[str] = None
    metadata: JsonValue = None


@dataclass
class HybridSearchRequest:
    text: str
    tablename: str
    qty: int
    include_content: bool = True
    include_metadata: bool = True


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """A row of a relational document table."""

    id: int
    content: str
    title: Optional[str] = None
    metadata: JsonValue = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A document returned by hybrid search; ``rank`` 0 is the closest match."""

    id: int
    rank: int
    content: Optional[str] = None
    title: Optional[str] = None
    metadata: JsonValue = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ModelInfo:
    path: str
    is_loaded: bool
    dimensions: Optional[int] = None


@dataclass(frozen=True, slots=True)
class DatabaseInfo:
    path: str
    is_connected: bool
    tables: tuple[str, ...] = ()


def coerce_request(request_type: Type[R], value: Any) -> R:
    """
    Return ``value`` as an instance of ``request_type``.

    Instances pass through unchanged; mappings are converted, rejecting
    missing or unknown keys.
    """
    if isinstance(value, request_type):
        return value
    if not isinstance(value, Mapping):
        raise invalid_input(
            f"Request must be a {request_type.__name__} or a mapping"
        )
    allowed = {field.name for field in fields(request_type)}
    unknown = sorted(set(value) - allowed)
    if unknown:
        raise invalid_input(
            f"Unknown {request_type.__name__} field(s): {', '.join(map(str, unknown))}"
        )
    try:
        return request_type(**value)
    except TypeError as exc:
        raise invalid_input(f"Invalid {request_type.__name__}: {exc}") from exc


__all__ = [
    "DatabaseInfo",
    "DocumentRecord",
    "EmbedRequest",
    "HybridSearchRequest",
    "JsonValue",
    "ModelInfo",
    "ModuleState",
    "SaveDocumentRequest",
    "SaveRequest",
    "SearchRequest",
    "SearchResult",
    "coerce_request",
]
