"""
localmem — Local persistent memory for AI agents.

Memories are split into atomic facts, each embedded in one of several
vector namespaces (OpenAI or local models) and stored in a single SQLite
database.  Search is semantic with soft tag boosting; switching embedding
modes backfills only the vectors that are missing.
"""

__version__ = "0.1.0"

from localmem.types import (
    Memory,
    Fact,
    MemoryHit,
    ScoredFact,
    TagSummary,
    SwitchResult,
    WriteResult,
)
from localmem.errors import (
    LocalMemError,
    ValidationError,
    NotFoundError,
    AuthenticationError,
    ProviderError,
    ConsistencyError,
)
from localmem.modes import EmbeddingMode
from localmem.store import MemoryStore, SCHEMA_VERSION
from localmem.mode_manager import ModeManager
from localmem.engine import MemoryEngine
from localmem.config import MemoryConfig, load_config

__all__ = [
    "__version__",
    "Memory",
    "Fact",
    "MemoryHit",
    "ScoredFact",
    "TagSummary",
    "SwitchResult",
    "WriteResult",
    "LocalMemError",
    "ValidationError",
    "NotFoundError",
    "AuthenticationError",
    "ProviderError",
    "ConsistencyError",
    "EmbeddingMode",
    "MemoryStore",
    "SCHEMA_VERSION",
    "ModeManager",
    "MemoryEngine",
    "MemoryConfig",
    "load_config",
]
