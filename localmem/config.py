"""
localmem Configuration

Configuration dataclasses for the store, search, embeddings, and fact
splitter.  Includes load_config() for reading a JSON config file with silent
fallback to compiled defaults, and apply_env_overrides() for the environment
variables recognised at startup.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from localmem.errors import ValidationError
from localmem.modes import EmbeddingMode, LANGUAGE_MODES, mode_for_language, parse_mode


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


_DEFAULT_DB_PATH = os.path.join(
    os.path.expanduser("~"), ".local", "share", "localmem", "memory.db",
)


@dataclass
class StoreConfig:
    """SQLite store configuration."""
    db_path: str = _DEFAULT_DB_PATH
    wal_mode: bool = True
    busy_retries: int = 5
    busy_backoff: float = 0.05

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.db_path:
            errors.append("store.db_path: must not be empty")
        _check_range(errors, "store.busy_retries",
                     self.busy_retries, 0, 50, int)
        _check_range(errors, "store.busy_backoff",
                     self.busy_backoff, 0.0, 10.0, float)
        return errors


@dataclass
class SearchConfig:
    """Similarity search defaults."""
    boost_lambda: float = 0.1
    default_limit: int = 10
    list_limit: int = 50

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "search.boost_lambda",
                     self.boost_lambda, 0.0, 10.0, float)
        _check_range(errors, "search.default_limit",
                     self.default_limit, 1, 10000, int)
        _check_range(errors, "search.list_limit",
                     self.list_limit, 1, 100000, int)
        return errors


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    # None = openai when an API key is present, else the local language mode
    mode: Optional[str] = None
    language_mode: str = "multilang"
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    local_english_model: str = "BAAI/bge-small-en-v1.5"
    local_multilingual_model: str = (
        "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    )
    openai_batch_size: int = 100
    local_batch_size: int = 50

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.mode is not None:
            try:
                parse_mode(self.mode)
            except ValidationError as exc:
                errors.append(f"embedding.mode: {exc}")
        if self.language_mode not in LANGUAGE_MODES:
            errors.append(
                f"embedding.language_mode: {self.language_mode!r} not in "
                f"{sorted(LANGUAGE_MODES)}"
            )
        _check_range(errors, "embedding.openai_batch_size",
                     self.openai_batch_size, 1, 2048, int)
        _check_range(errors, "embedding.local_batch_size",
                     self.local_batch_size, 1, 1024, int)
        return errors

    def default_mode(self) -> EmbeddingMode:
        """Mode used at startup."""
        if self.mode:
            return parse_mode(self.mode)
        if self.openai_api_key:
            return EmbeddingMode.OPENAI
        return mode_for_language(self.language_mode)

    def batch_size_for(self, mode: EmbeddingMode) -> int:
        """Backfill batch size for a mode."""
        if mode == EmbeddingMode.OPENAI:
            return self.openai_batch_size
        return self.local_batch_size


@dataclass
class SplitterConfig:
    """LLM fact-splitter configuration."""
    enabled: bool = True
    model: str = "gpt-4o-mini"
    max_facts: int = 4

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "splitter.max_facts",
                     self.max_facts, 1, 20, int)
        return errors


@dataclass
class MemoryConfig:
    """Top-level localmem configuration."""
    context_id: str = "default"
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    splitter: SplitterConfig = field(default_factory=SplitterConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "context_id" in d:
            kwargs["context_id"] = d["context_id"]
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "search" in d:
            kwargs["search"] = SearchConfig(**d["search"])
        if "embedding" in d:
            kwargs["embedding"] = EmbeddingConfig(**d["embedding"])
        if "splitter" in d:
            kwargs["splitter"] = SplitterConfig(**d["splitter"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        if not self.context_id:
            errors.append("context_id: must not be empty")
        errors.extend(self.store.validate())
        errors.extend(self.search.validate())
        errors.extend(self.embedding.validate())
        errors.extend(self.splitter.validate())
        return errors


def apply_env_overrides(
    cfg: MemoryConfig, environ: Optional[Mapping[str, str]] = None,
) -> MemoryConfig:
    """Overlay environment variables onto a config (in place).

    Recognised: LOCALMEM_DB, LOCALMEM_CONTEXT_ID, LOCALMEM_MODE,
    LOCALMEM_LANGUAGE_MODE, OPENAI_API_KEY, OPENAI_MODEL,
    OPENAI_EMBEDDING_MODEL.
    """
    env = os.environ if environ is None else environ
    if env.get("LOCALMEM_DB"):
        cfg.store.db_path = env["LOCALMEM_DB"]
    if env.get("LOCALMEM_CONTEXT_ID"):
        cfg.context_id = env["LOCALMEM_CONTEXT_ID"]
    if env.get("LOCALMEM_MODE"):
        cfg.embedding.mode = env["LOCALMEM_MODE"]
    if env.get("LOCALMEM_LANGUAGE_MODE"):
        cfg.embedding.language_mode = env["LOCALMEM_LANGUAGE_MODE"]
    if env.get("OPENAI_API_KEY"):
        cfg.embedding.openai_api_key = env["OPENAI_API_KEY"]
    if env.get("OPENAI_MODEL"):
        cfg.splitter.model = env["OPENAI_MODEL"]
    if env.get("OPENAI_EMBEDDING_MODEL"):
        cfg.embedding.openai_embedding_model = env["OPENAI_EMBEDDING_MODEL"]
    return cfg


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> MemoryConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Environment overrides are applied on top of the file (or defaults).

    Args:
        path: Path to config.json. If None, starts from compiled defaults.
        strict: If True, raise ValidationError on invalid config values.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        MemoryConfig with values from file, environment, or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = MemoryConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = MemoryConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = MemoryConfig()

    apply_env_overrides(cfg, environ)

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
