"""
Error taxonomy for localmem.

Five failure kinds, each with a stable ``kind`` string used when the MCP
layer renders a structured failure:

    ValidationError     — malformed input, bad tag pattern, unknown mode
    NotFoundError       — id absent or owned by another context
    AuthenticationError — credential rejected while switching modes
    ProviderError       — embedding or splitting call failed
    ConsistencyError    — a compound write could not complete atomically

The core returns ``None``/``False`` for not-found results; the MCP tool layer
raises NotFoundError when rendering them.
"""

from __future__ import annotations

from typing import Any, Dict


class LocalMemError(Exception):
    """Base class for all localmem errors."""

    kind = "error"

    def to_dict(self) -> Dict[str, Any]:
        """Render as a structured failure payload."""
        return {"status": "error", "error": self.kind, "message": str(self)}


class ValidationError(LocalMemError, ValueError):
    """Raised when input is missing, malformed, or out of range."""

    kind = "validation_error"


class NotFoundError(LocalMemError, LookupError):
    """Raised when a referenced id is absent or not owned by the caller."""

    kind = "not_found"


class AuthenticationError(LocalMemError):
    """Raised when a provider credential is rejected."""

    kind = "authentication_error"


class ProviderError(LocalMemError):
    """Raised when an embedding or splitting call fails.

    ``completed`` records how many items were durably written before the
    failure (used by batched backfill, which keeps finished batches).
    """

    kind = "provider_error"

    def __init__(self, message: str, *, completed: int = 0):
        super().__init__(message)
        self.completed = completed

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if self.completed:
            d["completed"] = self.completed
        return d


class ConsistencyError(LocalMemError):
    """Raised when a compound write or cascading delete fails part-way.

    Always fatal for the operation; the transaction has been rolled back.
    """

    kind = "consistency_error"
