"""
Provider protocols.

Structural interfaces for embedding providers and fact splitters; concrete
classes need not inherit from them.  Fakes in the test suite satisfy the
same protocols.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence, runtime_checkable

import numpy as np

from localmem.modes import EmbeddingMode


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Turns text into vectors of one embedding mode.

    Vectors returned by ``embed_one``/``embed_batch`` have exactly
    ``dimension`` components.  The store normalizes them again before
    writing, so providers may return raw model output.
    """

    mode: EmbeddingMode

    @property
    def dimension(self) -> int:
        """Length of every vector this provider returns."""
        ...

    def identifier(self) -> str:
        """Model name, for logs and stats."""
        ...

    def requires_manual_facts(self) -> bool:
        """True when callers must supply facts (no splitter in this mode)."""
        ...

    def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text."""
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed many texts, preserving order.

        Raises:
            ProviderError: If the underlying call fails.
        """
        ...


@runtime_checkable
class FactSplitter(Protocol):
    """Splits a memory's text into a short list of atomic facts."""

    def split(self, text: str) -> List[str]:
        """Return one or more fact strings for ``text``."""
        ...
