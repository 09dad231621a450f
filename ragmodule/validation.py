"""
Input validation and sanitization.

All functions are pure and raise :class:`~ragmodule.errors.RAGError` with
kind ``INVALID_INPUT`` on violation. They return the normalized value
(trimmed strings, ``int`` ids, ``float`` vectors) that callers should use
downstream.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from numbers import Real
from typing import Any, Dict, List

import numpy as np

from ragmodule.errors import invalid_input

MAX_TEXT_LENGTH = 1_000_000
MAX_TABLE_NAME_LENGTH = 64
MIN_SEARCH_QUANTITY = 1
MAX_SEARCH_QUANTITY = 1000
MAX_VECTOR_DIMENSIONS = 10_000
# Signed 64-bit bound, matching the BIGINT document key.
MAX_SAFE_ID = 2**63 - 1

LOG_LEVELS = ("debug", "info", "warn", "error")
SQL_DIALECTS = ("mysql", "postgresql", "sqlite")

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

RESERVED_WORDS = frozenset(
    {
        "SELECT", "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER",
        "INDEX", "TABLE", "DATABASE", "SCHEMA", "VIEW", "TRIGGER", "PROCEDURE",
        "FUNCTION", "UNION", "JOIN", "WHERE", "ORDER", "GROUP", "HAVING", "LIMIT",
    }
)


def validate_text(text: Any, field_name: str = "text") -> str:
    """Validate free text and return it trimmed."""
    if not isinstance(text, str):
        raise invalid_input(f"{field_name} must be a string")
    if len(text) == 0:
        raise invalid_input(f"{field_name} cannot be empty")
    trimmed = text.strip()
    if len(trimmed) == 0:
        raise invalid_input(f"{field_name} cannot be empty or whitespace only")
    if len(trimmed) > MAX_TEXT_LENGTH:
        raise invalid_input(
            f"{field_name} exceeds maximum length of {MAX_TEXT_LENGTH} characters"
        )
    return trimmed


def validate_table_name(name: Any) -> str:
    """Validate a collection/table identifier and return it trimmed."""
    if not isinstance(name, str):
        raise invalid_input("Table name must be a string")
    if len(name) == 0:
        raise invalid_input("Table name cannot be empty")
    trimmed = name.strip()
    if len(trimmed) == 0:
        raise invalid_input("Table name cannot be empty or whitespace only")
    if len(trimmed) > MAX_TABLE_NAME_LENGTH:
        raise invalid_input(
            f"Invalid table name format: longer than {MAX_TABLE_NAME_LENGTH} characters"
        )
    if not TABLE_NAME_PATTERN.fullmatch(trimmed):
        raise invalid_input(
            "Invalid table name format: must start with a letter followed by "
            "letters, digits, underscores or hyphens"
        )
    if trimmed.upper() in RESERVED_WORDS:
        raise invalid_input(f"Table name '{trimmed}' is a reserved SQL keyword")
    return trimmed


def _as_integer(value: Any) -> int | None:
    """Return ``value`` as an int when it is integral, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        if math.isfinite(value) and float(value).is_integer():
            return int(value)
    return None


def validate_id(id: Any) -> int:
    """Validate a record id: a non-negative integer within ``MAX_SAFE_ID``."""
    if isinstance(id, bool) or not isinstance(id, Real):
        raise invalid_input("ID must be a number")
    value = _as_integer(id)
    if value is None or value < 0:
        raise invalid_input("ID must be a non-negative integer")
    if value > MAX_SAFE_ID:
        raise invalid_input("ID exceeds maximum safe integer value")
    return value


def validate_search_quantity(qty: Any) -> int:
    """Validate a top-K quantity in ``[1, 1000]``."""
    if isinstance(qty, bool) or not isinstance(qty, Real):
        raise invalid_input("Quantity must be a number")
    value = _as_integer(qty)
    if value is None or value < MIN_SEARCH_QUANTITY:
        raise invalid_input("Quantity must be a positive integer")
    if value > MAX_SEARCH_QUANTITY:
        raise invalid_input(f"Quantity cannot exceed {MAX_SEARCH_QUANTITY} results")
    return value


def validate_vector(vector: Any) -> List[float]:
    """Validate an embedding vector and return it as a list of floats."""
    if isinstance(vector, np.ndarray):
        if vector.ndim != 1:
            raise invalid_input("Vector must be one-dimensional")
        vector = vector.tolist()
    if not isinstance(vector, (list, tuple)):
        raise invalid_input("Vector must be an array")
    if len(vector) == 0:
        raise invalid_input("Vector cannot be empty")
    if len(vector) > MAX_VECTOR_DIMENSIONS:
        raise invalid_input(
            f"Vector dimensions exceed limit of {MAX_VECTOR_DIMENSIONS}"
        )
    result: List[float] = []
    for index, value in enumerate(vector):
        if isinstance(value, bool) or not isinstance(value, Real):
            raise invalid_input(f"Vector element at index {index} must be a number")
        if not math.isfinite(value):
            raise invalid_input(
                f"Vector element at index {index} must be a finite number"
            )
        result.append(float(value))
    return result


def sanitize_text(text: str) -> str:
    """Strip control characters, keeping newlines, tabs and printable text."""
    if not isinstance(text, str):
        return text
    return _CONTROL_CHARACTERS.sub("", text)


def validate_metadata(metadata: Any) -> Any:
    """Ensure caller metadata is a plain JSON value."""
    if metadata is None:
        return None
    try:
        json.dumps(metadata, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise invalid_input(f"Metadata must be JSON-serializable: {exc}") from exc
    return metadata


def _validate_string_option(config: Mapping, key: str, label: str) -> str:
    value = config[key]
    if not isinstance(value, str):
        raise invalid_input(f"{label} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise invalid_input(f"{label} cannot be empty")
    return trimmed


def validate_relational_config(config: Any) -> Dict[str, Any]:
    """Validate the relational connection block used by hybrid modules."""
    if not isinstance(config, Mapping):
        raise invalid_input("Relational configuration must be a mapping")

    validated: Dict[str, Any] = {}
    for key, label in (
        ("host", "Relational host"),
        ("user", "Relational user"),
        ("database", "Relational database"),
        ("url", "Relational URL"),
    ):
        if config.get(key) is not None:
            validated[key] = _validate_string_option(config, key, label)

    if config.get("dialect") is not None:
        dialect = _validate_string_option(config, "dialect", "Relational dialect").lower()
        if dialect not in SQL_DIALECTS:
            raise invalid_input(
                f"Relational dialect must be one of: {', '.join(SQL_DIALECTS)}"
            )
        validated["dialect"] = dialect

    if config.get("password") is not None:
        if not isinstance(config["password"], str):
            raise invalid_input("Relational password must be a string")
        validated["password"] = config["password"]

    if config.get("port") is not None:
        port = _as_integer(config["port"])
        if port is None or not 1 <= port <= 65535:
            raise invalid_input("Relational port must be an integer between 1 and 65535")
        validated["port"] = port

    if config.get("pool_size") is not None:
        pool_size = _as_integer(config["pool_size"])
        if pool_size is None or pool_size < 1:
            raise invalid_input("Relational pool size must be a positive integer")
        validated["pool_size"] = pool_size

    if config.get("ssl") is not None:
        if not isinstance(config["ssl"], bool):
            raise invalid_input("Relational ssl flag must be a boolean")
        validated["ssl"] = config["ssl"]

    return validated


def validate_config(config: Any) -> Dict[str, Any]:
    """
    Validate a module configuration mapping.

    ``None`` yields an empty mapping. Recognized keys are type-checked and
    normalized; any other key is dropped.
    """
    if config is None:
        return {}
    if not isinstance(config, Mapping):
        raise invalid_input("Configuration must be a mapping")

    validated: Dict[str, Any] = {}

    if config.get("model_path") is not None:
        validated["model_path"] = _validate_string_option(config, "model_path", "Model path")

    if config.get("storage_path") is not None:
        validated["storage_path"] = _validate_string_option(
            config, "storage_path", "Storage path"
        )

    if config.get("log_level") is not None:
        level = config["log_level"]
        if level not in LOG_LEVELS:
            raise invalid_input(f"Log level must be one of: {', '.join(LOG_LEVELS)}")
        validated["log_level"] = level

    if config.get("device") is not None:
        validated["device"] = _validate_string_option(config, "device", "Device")

    if config.get("normalize_embeddings") is not None:
        if not isinstance(config["normalize_embeddings"], bool):
            raise invalid_input("normalize_embeddings must be a boolean")
        validated["normalize_embeddings"] = config["normalize_embeddings"]

    if config.get("relational") is not None:
        validated["relational"] = validate_relational_config(config["relational"])

    return validated


__all__ = [
    "LOG_LEVELS",
    "MAX_SAFE_ID",
    "MAX_SEARCH_QUANTITY",
    "MAX_TABLE_NAME_LENGTH",
    "MAX_TEXT_LENGTH",
    "MAX_VECTOR_DIMENSIONS",
    "RESERVED_WORDS",
    "TABLE_NAME_PATTERN",
    "sanitize_text",
    "validate_config",
    "validate_id",
    "validate_metadata",
    "validate_relational_config",
    "validate_search_quantity",
    "validate_table_name",
    "validate_text",
    "validate_vector",
]
