"""
Data Model — memories, facts, search hits, tag summaries.

A Memory owns its Facts exclusively. Facts are the unit of search: each
fact may hold one vector per embedding mode. Tags live on the memory as an
ordered list of strings, unique as stored and compared case-insensitively.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# 12 hex chars = 48 bits; inserts also retry on primary-key conflict.
ID_LENGTH = 12


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    """Generate a short random identifier."""
    return uuid.uuid4().hex[:ID_LENGTH]


def dedupe_tags(tags: List[str]) -> List[str]:
    """Drop exact duplicates, keeping first-seen order."""
    seen = set()
    out: List[str] = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class Memory:
    """A short narrative record with a tag set, owned by one context."""

    id: str = field(default_factory=_generate_id)
    context_id: str = "default"
    text: str = ""
    tags: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    version: int = 1
    # Stored without facts; never listed or searched, only fetched by id.
    direct_access_only: bool = False

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive exact tag membership."""
        needle = tag.lower()
        return any(t.lower() == needle for t in self.tags)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Memory:
        """Deserialize from a dictionary, filtering to known fields."""
        known = set(cls.__dataclass_fields__.keys())
        return cls(**{k: v for k, v in d.items() if k in known})


@dataclass
class Fact:
    """An atomic statement belonging to exactly one memory."""

    id: str = field(default_factory=_generate_id)
    memory_id: str = ""
    text: str = ""
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)


@dataclass
class WriteResult:
    """A memory as written by add/update, with the facts now attached.

    ``ai_extracted`` is True when the facts came from the splitter rather
    than from the caller.
    """

    memory: Memory
    facts: List[Fact] = field(default_factory=list)
    ai_extracted: bool = False


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------

@dataclass
class ScoredFact:
    """A fact with its combined similarity + tag-boost score."""

    fact: Fact
    memory: Memory
    score: float
    similarity: float = 0.0
    tag_matches: int = 0


@dataclass
class MemoryHit:
    """One memory in a deduplicated search result.

    ``score`` is the best fact score; ``facts`` lists every matched fact of
    this memory in descending score order.
    """

    memory: Memory
    score: float
    facts: List[ScoredFact] = field(default_factory=list)


@dataclass
class TagSummary:
    """Aggregate metadata for one tag within a context."""

    tag: str
    memory_count: int
    first_memory_date: str
    last_memory_date: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Mode switching
# ---------------------------------------------------------------------------

@dataclass
class SwitchResult:
    """Outcome of a successful embedding-mode switch."""

    active_mode: str
    previous_mode: Optional[str]
    missing_before: int = 0
    embedded_count: int = 0
    elapsed_seconds: float = 0.0
    estimated_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)
