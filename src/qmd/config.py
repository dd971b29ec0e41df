# src/qmd/config.py
"""Configuration system for QMD search.

This module handles loading settings from environment variables and an INI
file in the data directory, providing sensible defaults, and computing the
derived paths for the database and vector store.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "chunking": {
        "max_tokens": (int, 800, 50, 8192, "Maximum estimated tokens per chunk"),
        "overlap_percent": (float, 0.15, 0.0, 0.5, "Overlap between consecutive chunks"),
    },
    "search": {
        "result_limit": (int, 10, 1, 100, "Default fused results to return"),
        "candidate_limit": (int, 20, 1, 500, "Candidates fetched from each searcher"),
        "rrf_k": (int, 60, 1, 1000, "Reciprocal rank fusion constant"),
        "lexical_limit": (int, 20, 1, 500, "Default lexical results to return"),
        "snippet_max_length": (int, 200, 50, 1000, "Max synthesized snippet length"),
        "snippet_tokens": (int, 32, 4, 64, "Token budget for highlighted snippets"),
        "fallback_strategy": (str, "graceful", None, None, "'graceful' or 'fail'"),
        "branch_timeout_seconds": (float, 60.0, 1.0, 600.0, "Per-branch search timeout"),
    },
    "embedding": {
        "model": (str, "nomic-embed-text", None, None, "Primary embedding model"),
        "fallback_model": (str, "mxbai-embed-large", None, None, "Fallback embedding model"),
        "dimensions": (int, 768, 1, 8192, "Expected embedding dimensions"),
        "timeout_seconds": (float, 30.0, 1.0, 600.0, "Embedding request timeout"),
        "check_timeout_seconds": (float, 5.0, 0.5, 60.0, "Availability check timeout"),
        "batch_size": (int, 10, 1, 500, "Chunks embedded per batch"),
        "max_retries": (int, 1, 0, 10, "Retries per chunk embedding"),
    },
    "indexing": {
        "debounce_ms": (int, 500, 0, 60_000, "Delay before re-indexing a changed file"),
        "batch_size": (int, 50, 1, 1000, "Documents per indexing transaction"),
        "large_file_bytes": (int, 10 * 1024 * 1024, 1024, None, "Large file warning size"),
    },
}

FALLBACK_STRATEGIES = ("graceful", "fail")


@dataclass(frozen=True)
class ChunkingConfig:
    """Document chunking configuration."""

    max_tokens: int
    overlap_percent: float


@dataclass(frozen=True)
class SearchConfig:
    """Search and fusion configuration."""

    result_limit: int
    candidate_limit: int
    rrf_k: int
    lexical_limit: int
    snippet_max_length: int
    snippet_tokens: int
    fallback_strategy: str
    branch_timeout_seconds: float


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding service configuration."""

    model: str
    fallback_model: str
    dimensions: int
    timeout_seconds: float
    check_timeout_seconds: float
    batch_size: int
    max_retries: int


@dataclass(frozen=True)
class IndexingConfig:
    """Document indexing configuration."""

    debounce_ms: int
    batch_size: int
    large_file_bytes: int


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value.strip()
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    if section == "search" and result["fallback_strategy"] not in FALLBACK_STRATEGIES:
        raise ConfigError(
            f"Value for [search].fallback_strategy is {result['fallback_strategy']!r}, "
            f"expected one of {', '.join(FALLBACK_STRATEGIES)}"
        )

    return result


def _schema_defaults(section: str) -> dict[str, Any]:
    return {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}


def _load_config(config_path: Optional[Path] = None) -> "Config":
    """Load configuration from an INI file (internal use only).

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Config object with all sections populated (data_dir is a placeholder)

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    return Config(
        data_dir=Path("."),  # Placeholder, will be overwritten
        chunking=ChunkingConfig(**_load_section(parser, "chunking", CONFIG_SCHEMA["chunking"])),
        search=SearchConfig(**_load_section(parser, "search", CONFIG_SCHEMA["search"])),
        embedding=EmbeddingConfig(
            **_load_section(parser, "embedding", CONFIG_SCHEMA["embedding"])
        ),
        indexing=IndexingConfig(**_load_section(parser, "indexing", CONFIG_SCHEMA["indexing"])),
    )


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    ollama_endpoint: str = "http://localhost:11434"

    # Section configs - defaults set in __post_init__
    chunking: ChunkingConfig = None  # type: ignore[assignment]
    search: SearchConfig = None  # type: ignore[assignment]
    embedding: EmbeddingConfig = None  # type: ignore[assignment]
    indexing: IndexingConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        # Since frozen=True, we need to use object.__setattr__
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".qmd")
        if self.chunking is None:
            object.__setattr__(self, "chunking", ChunkingConfig(**_schema_defaults("chunking")))
        if self.search is None:
            object.__setattr__(self, "search", SearchConfig(**_schema_defaults("search")))
        if self.embedding is None:
            object.__setattr__(self, "embedding", EmbeddingConfig(**_schema_defaults("embedding")))
        if self.indexing is None:
            object.__setattr__(self, "indexing", IndexingConfig(**_schema_defaults("indexing")))

    @property
    def config_path(self) -> Path:
        """Path to the optional config.ini file."""
        return self.data_dir / "config.ini"

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.data_dir / "qmd.db"

    @property
    def chroma_path(self) -> Path:
        """Path to ChromaDB vector store directory."""
        return self.data_dir / "chroma"


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.
    """
    data_dir_str = os.getenv("QMD_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".qmd"

    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    base_config = _load_config(config_file if config_exists else None)

    return Config(
        data_dir=data_dir,
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        chunking=base_config.chunking,
        search=base_config.search,
        embedding=base_config.embedding,
        indexing=base_config.indexing,
    )


def settings_or_defaults() -> Config:
    """Return loaded settings, or schema defaults when settings are unavailable."""
    try:
        return load_settings()
    except (ValueError, OSError, ConfigError):
        return Config()
