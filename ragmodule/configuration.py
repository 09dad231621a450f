"""
Configuration primitives for ragmodule.

`RAGConfig` is the single object a :class:`~ragmodule.module.RAGModule`
reads at construction time: where the embedding model lives, where vectors
are persisted, how verbose logging is and, for hybrid modules, how to reach
the relational document database.

Example usage::

    from ragmodule.configuration import RAGConfig, RelationalSettings

    config = RAGConfig(
        model_path="all-MiniLM-L6-v2",
        storage_path="./vectors",
        relational=RelationalSettings(
            dialect="postgresql",
            host="localhost",
            user="rag",
            password="secret",
            database="documents",
        ),
    )

Configuration can also be read from ``RAG_*`` environment variables
(optionally seeded from a ``.env`` file)::

    config = RAGConfig.from_env(dotenv_path=".env")
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from dotenv import dotenv_values
from sqlalchemy.engine import URL

from ragmodule.errors import ConfigurationError
from ragmodule.validation import validate_config, validate_relational_config

DEFAULT_MODEL_PATH = "all-MiniLM-L6-v2"
DEFAULT_STORAGE_PATH = "./rag_vectors"
DEFAULT_LOG_LEVEL = "info"
ENV_PREFIX = "RAG_"

_DRIVERS = {
    "mysql": "mysql+pymysql",
    "postgresql": "postgresql+psycopg2",
    "sqlite": "sqlite",
}
_DEFAULT_PORTS = {"mysql": 3306, "postgresql": 5432}


@dataclass(slots=True)
class RelationalSettings:
    """Connection settings for the relational document store."""

    dialect: str = "mysql"
    host: str = "localhost"
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    pool_size: int = 10
    ssl: bool = False
    url: str | None = None

    def __post_init__(self) -> None:
        validate_relational_config(
            {key: value for key, value in asdict(self).items() if value is not None}
        )
        self.dialect = self.dialect.lower()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RelationalSettings":
        return cls(**validate_relational_config(values))

    @property
    def resolved_port(self) -> int | None:
        if self.port is not None:
            return self.port
        return _DEFAULT_PORTS.get(self.dialect)

    def sqlalchemy_url(self) -> URL | str:
        """Return the SQLAlchemy URL for these settings."""
        if self.url:
            return self.url
        if self.dialect == "sqlite":
            return URL.create("sqlite", database=self.database)
        return URL.create(
            _DRIVERS[self.dialect],
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.resolved_port,
            database=self.database,
        )

    def describe(self) -> str:
        """Connection string safe for logs (password hidden)."""
        url = self.sqlalchemy_url()
        if isinstance(url, URL):
            return url.render_as_string(hide_password=True)
        return url


@dataclass(slots=True)
class RAGConfig:
    """
    Root configuration for a RAG module.

    Attributes:
        model_path: Sentence-transformers model name or local model directory.
        storage_path: Directory for the persistent vector store, or
            ``":memory:"`` for an ephemeral store.
        log_level: One of ``debug``, ``info``, ``warn``, ``error``.
        device: Optional torch device for the embedding model (``cpu``, ``cuda``).
        normalize_embeddings: Whether embeddings are L2-normalized.
        relational: Relational document store settings; enables hybrid mode.
    """

    model_path: str = DEFAULT_MODEL_PATH
    storage_path: str = DEFAULT_STORAGE_PATH
    log_level: str = DEFAULT_LOG_LEVEL
    device: str | None = None
    normalize_embeddings: bool = True
    relational: RelationalSettings | None = field(default=None)

    def __post_init__(self) -> None:
        values: dict[str, Any] = {
            "model_path": self.model_path,
            "storage_path": str(self.storage_path),
            "log_level": self.log_level,
            "device": self.device,
            "normalize_embeddings": self.normalize_embeddings,
        }
        validated = validate_config(values)
        self.model_path = validated["model_path"]
        self.storage_path = validated["storage_path"]
        self.device = validated.get("device")
        if isinstance(self.relational, Mapping):
            self.relational = RelationalSettings.from_mapping(self.relational)
        elif self.relational is not None and not isinstance(self.relational, RelationalSettings):
            raise ConfigurationError("relational must be a RelationalSettings or a mapping")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> "RAGConfig":
        """Build a config from a plain mapping, merging over the defaults."""
        validated = validate_config(values)
        relational = validated.pop("relational", None)
        return cls(
            **validated,
            relational=RelationalSettings(**relational) if relational is not None else None,
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv_path: Path | str | None = None,
    ) -> "RAGConfig":
        """
        Build a config from ``RAG_*`` environment variables.

        Recognized variables: ``RAG_MODEL_PATH``, ``RAG_STORAGE_PATH``,
        ``RAG_LOG_LEVEL``, ``RAG_DEVICE``, ``RAG_NORMALIZE_EMBEDDINGS`` and,
        for hybrid modules, ``RAG_DB_DIALECT``, ``RAG_DB_HOST``,
        ``RAG_DB_PORT``, ``RAG_DB_USER``, ``RAG_DB_PASSWORD``, ``RAG_DB_NAME``,
        ``RAG_DB_POOL_SIZE``, ``RAG_DB_SSL`` and ``RAG_DB_URL``. Values from
        ``dotenv_path`` fill in variables the environment does not set.
        """
        env: Dict[str, str] = {}
        if dotenv_path is not None:
            env.update(
                {key: value for key, value in dotenv_values(dotenv_path).items() if value is not None}
            )
        env.update(os.environ if environ is None else environ)

        values: dict[str, Any] = {}
        for key in ("model_path", "storage_path", "log_level", "device"):
            raw = env.get(f"{ENV_PREFIX}{key.upper()}")
            if raw is not None:
                values[key] = raw
        normalize = env.get(f"{ENV_PREFIX}NORMALIZE_EMBEDDINGS")
        if normalize is not None:
            values["normalize_embeddings"] = _parse_bool(normalize)

        relational: dict[str, Any] = {}
        for key, env_key in (
            ("dialect", "DB_DIALECT"),
            ("host", "DB_HOST"),
            ("user", "DB_USER"),
            ("password", "DB_PASSWORD"),
            ("database", "DB_NAME"),
            ("url", "DB_URL"),
        ):
            raw = env.get(f"{ENV_PREFIX}{env_key}")
            if raw is not None:
                relational[key] = raw
        for key, env_key in (("port", "DB_PORT"), ("pool_size", "DB_POOL_SIZE")):
            raw = env.get(f"{ENV_PREFIX}{env_key}")
            if raw is not None:
                try:
                    relational[key] = int(raw)
                except ValueError as exc:
                    raise ConfigurationError(
                        f"{ENV_PREFIX}{env_key} must be an integer, got {raw!r}", exc
                    ) from exc
        ssl = env.get(f"{ENV_PREFIX}DB_SSL")
        if ssl is not None:
            relational["ssl"] = _parse_bool(ssl)
        if relational:
            values["relational"] = relational

        return cls.from_mapping(values)


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Expected a boolean value, got {raw!r}")


def coerce_config(config: RAGConfig | Mapping[str, Any] | None) -> RAGConfig:
    """Accept a RAGConfig, a mapping or None and return a RAGConfig."""
    if isinstance(config, RAGConfig):
        return config
    return RAGConfig.from_mapping(config)


__all__ = [
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_MODEL_PATH",
    "DEFAULT_STORAGE_PATH",
    "RAGConfig",
    "RelationalSettings",
    "coerce_config",
]
