"""
Error taxonomy shared by every ragmodule component.

Every failure that reaches a caller is a :class:`RAGError` carrying a
human-readable message, a machine-checkable :class:`ErrorKind` and, when the
failure originated in a collaborator (embedding engine, vector store,
relational driver), the original exception as ``cause``.

Foreign exceptions are wrapped exactly once, at the boundary where a
collaborator is called. A ``RAGError`` raised further down is never
re-wrapped, so its kind and message survive arbitrarily deep call chains::

    with translate_errors(ErrorKind.SEARCH_FAILED, "search vectors"):
        ids = store.similarity_search(name, vector, limit)
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Optional


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
    DATABASE_CONNECTION_FAILED = "DATABASE_CONNECTION_FAILED"
    TABLE_CREATION_FAILED = "TABLE_CREATION_FAILED"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    VECTOR_SAVE_FAILED = "VECTOR_SAVE_FAILED"
    SEARCH_FAILED = "SEARCH_FAILED"
    INVALID_INPUT = "INVALID_INPUT"


class RAGError(Exception):
    """Single error shape raised by ragmodule."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = ErrorKind(kind)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return f"RAGError(kind={self.kind.value!r}, message={self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging and event payloads."""
        cause: Optional[Dict[str, Any]] = None
        if isinstance(self.cause, RAGError):
            cause = self.cause.to_dict()
        elif self.cause is not None:
            cause = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return {
            "kind": self.kind.value,
            "message": self.message,
            "cause": cause,
        }


class ConfigurationError(RAGError):
    """Raised when loading or validating configuration fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, ErrorKind.INVALID_INPUT, cause)


def invalid_input(message: str) -> RAGError:
    """Shorthand for the validation failure every validator raises."""
    return RAGError(message, ErrorKind.INVALID_INPUT)


def wrap_error(exc: BaseException, kind: ErrorKind, action: str) -> RAGError:
    """Return ``exc`` unchanged if it is already a RAGError, else wrap it once."""
    if isinstance(exc, RAGError):
        return exc
    return RAGError(f"Failed to {action}: {exc}", kind, exc)


@contextmanager
def translate_errors(kind: ErrorKind, action: str) -> Iterator[None]:
    """Wrap foreign exceptions raised inside the block as ``RAGError(kind)``."""
    try:
        yield
    except RAGError:
        raise
    except Exception as exc:
        raise wrap_error(exc, kind, action) from exc


__all__ = [
    "ConfigurationError",
    "ErrorKind",
    "RAGError",
    "invalid_input",
    "translate_errors",
    "wrap_error",
]
