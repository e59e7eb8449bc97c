"""
Local embedding provider using sentence-transformers.

Models load on first use and are cached for the life of the provider.
Install with ``pip install localmem[local]``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Sequence

import numpy as np

from localmem.errors import ProviderError
from localmem.modes import EmbeddingMode, mode_spec

logger = logging.getLogger(__name__)


class SentenceTransformerProvider:
    """384-D local embeddings (English or multilingual model)."""

    def __init__(self, mode: EmbeddingMode, model_name: str, model: Any = None):
        self.mode = mode
        self.model_name = model_name
        self._model = model
        self._load_lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return mode_spec(self.mode).dimension

    def identifier(self) -> str:
        return f"local:{self.model_name}"

    def requires_manual_facts(self) -> bool:
        return True

    def _get_model(self):
        with self._load_lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError:
                    raise ProviderError(
                        "Local embedding modes require 'sentence-transformers' "
                        "(pip install localmem[local])"
                    ) from None
                logger.info("Loading local embedding model: %s", self.model_name)
                try:
                    self._model = SentenceTransformer(self.model_name)
                except (OSError, ValueError, RuntimeError) as exc:
                    raise ProviderError(
                        f"Could not load model {self.model_name}: {exc}"
                    ) from exc
        return self._model

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        if not texts:
            return []
        model = self._get_model()
        try:
            matrix = model.encode(
                list(texts), normalize_embeddings=True, convert_to_numpy=True,
            )
        except (ValueError, RuntimeError) as exc:
            raise ProviderError(f"Local embedding failed: {exc}") from exc
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise ProviderError(
                f"Model {self.model_name} produced shape {matrix.shape}, "
                f"expected (*, {self.dimension})"
            )
        return list(matrix)
