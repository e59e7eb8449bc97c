"""
Embedding Modes — the vector namespace registry.

Each mode is a named vector space with a fixed dimension, backed by its own
SQLite table. Table names come only from this registry, never from caller
input, so a namespace handle is all the store needs to address a table.

    openai              1536-D   fact_vectors_openai
    local_english        384-D   fact_vectors_local_en
    local_multilingual   384-D   fact_vectors_local_ml
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from localmem.errors import ValidationError


class EmbeddingMode(str, Enum):
    """Supported embedding modes."""

    OPENAI = "openai"
    LOCAL_ENGLISH = "local_english"
    LOCAL_MULTILINGUAL = "local_multilingual"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ModeSpec:
    """Static properties of one embedding mode."""

    mode: EmbeddingMode
    dimension: int
    table: str
    # Switching to this mode validates a remote credential first.
    requires_credential: bool
    # Facts must be supplied by the caller (no splitter in this mode).
    requires_manual_facts: bool
    batch_size: int
    seconds_per_item: float


MODE_SPECS: Dict[EmbeddingMode, ModeSpec] = {
    EmbeddingMode.OPENAI: ModeSpec(
        mode=EmbeddingMode.OPENAI,
        dimension=1536,
        table="fact_vectors_openai",
        requires_credential=True,
        requires_manual_facts=False,
        batch_size=100,
        seconds_per_item=0.1,
    ),
    EmbeddingMode.LOCAL_ENGLISH: ModeSpec(
        mode=EmbeddingMode.LOCAL_ENGLISH,
        dimension=384,
        table="fact_vectors_local_en",
        requires_credential=False,
        requires_manual_facts=True,
        batch_size=50,
        seconds_per_item=0.15,
    ),
    EmbeddingMode.LOCAL_MULTILINGUAL: ModeSpec(
        mode=EmbeddingMode.LOCAL_MULTILINGUAL,
        dimension=384,
        table="fact_vectors_local_ml",
        requires_credential=False,
        requires_manual_facts=True,
        batch_size=50,
        seconds_per_item=0.15,
    ),
}

# language_mode config value → local mode
LANGUAGE_MODES: Dict[str, EmbeddingMode] = {
    "en": EmbeddingMode.LOCAL_ENGLISH,
    "multilang": EmbeddingMode.LOCAL_MULTILINGUAL,
}


class VectorNamespace:
    """Handle to the vector table of one embedding mode."""

    __slots__ = ("spec",)

    def __init__(self, spec: ModeSpec):
        self.spec = spec

    @property
    def mode(self) -> EmbeddingMode:
        return self.spec.mode

    @property
    def table(self) -> str:
        return self.spec.table

    @property
    def dimension(self) -> int:
        return self.spec.dimension

    def ddl(self) -> str:
        """CREATE TABLE statement for this namespace."""
        return f"""
CREATE TABLE IF NOT EXISTS {self.table} (
    fact_id   TEXT PRIMARY KEY,
    dim       INTEGER NOT NULL DEFAULT {self.dimension},
    unit_norm INTEGER NOT NULL DEFAULT 1,
    embedding BLOB NOT NULL,
    FOREIGN KEY (fact_id) REFERENCES facts(id) ON DELETE CASCADE
);
"""

    def __repr__(self) -> str:
        return f"VectorNamespace({self.mode.value!r}, dim={self.dimension})"


_NAMESPACES: Dict[EmbeddingMode, VectorNamespace] = {
    mode: VectorNamespace(spec) for mode, spec in MODE_SPECS.items()
}


def parse_mode(value) -> EmbeddingMode:
    """Resolve a mode name (or enum) to an EmbeddingMode.

    Raises:
        ValidationError: If the name is not a registered mode.
    """
    if isinstance(value, EmbeddingMode):
        return value
    try:
        return EmbeddingMode(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in EmbeddingMode)
        raise ValidationError(
            f"Invalid mode: {value!r}. Must be one of: {valid}"
        ) from None


def mode_spec(mode) -> ModeSpec:
    """Return the ModeSpec for a mode name or enum."""
    return MODE_SPECS[parse_mode(mode)]


def namespace_for(mode) -> VectorNamespace:
    """Return the namespace handle for a mode name or enum."""
    return _NAMESPACES[parse_mode(mode)]


def all_namespaces() -> List[VectorNamespace]:
    """Every registered namespace, in enum order."""
    return [_NAMESPACES[m] for m in EmbeddingMode]


def mode_for_language(language_mode: Optional[str]) -> EmbeddingMode:
    """Map a language_mode setting ('en' or 'multilang') to a local mode."""
    try:
        return LANGUAGE_MODES[(language_mode or "multilang").lower()]
    except KeyError:
        raise ValidationError(
            f"Invalid language_mode: {language_mode!r}. Must be 'en' or 'multilang'"
        ) from None


def estimate_duration(count: int, mode) -> str:
    """Human-readable estimate of backfill time. Feedback only."""
    total = count * mode_spec(mode).seconds_per_item
    if total < 10:
        return "< 10 seconds"
    if total < 60:
        return f"{math.ceil(total / 10) * 10} seconds"
    minutes = math.ceil(total / 60)
    if total < 300:
        return f"{minutes} {'minute' if minutes == 1 else 'minutes'}"
    lo = (minutes // 5) * 5
    hi = math.ceil(minutes / 5) * 5
    return f"{minutes} minutes ({lo}-{hi} minute range)"
