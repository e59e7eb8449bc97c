"""
Shared pytest fixtures for localmem tests.

Provides deterministic fake embedding providers and a fake fact splitter,
so no test touches the network or loads a model.
"""

import hashlib

import numpy as np
import pytest

from localmem.engine import MemoryEngine
from localmem.errors import ProviderError
from localmem.mode_manager import ModeManager
from localmem.modes import EmbeddingMode, mode_spec, parse_mode
from localmem.store import MemoryStore


def hashed_vector(text, dim):
    """Deterministic pseudo-random vector seeded from the text."""
    seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
    return np.random.default_rng(seed).standard_normal(dim)


def basis(dim, i):
    """Unit vector along axis i."""
    v = np.zeros(dim)
    v[i] = 1.0
    return v


def at_similarity(dim, sim, axis):
    """Unit vector whose dot with basis(dim, 0) is exactly ``sim``.

    ``axis`` (> 0) picks the orthogonal component, so vectors built on
    different axes do not interact beyond axis 0.
    """
    v = np.zeros(dim)
    v[0] = sim
    v[axis] = np.sqrt(1.0 - sim * sim)
    return v


class FakeProvider:
    """
    Deterministic embedding provider for one mode.

    Texts listed in ``vectors`` get those vectors; anything else gets a
    hash-seeded vector.  ``fail_on_call`` makes the N-th embed_batch call
    raise ProviderError.
    """

    def __init__(self, mode, vectors=None, fail_on_call=None, manual_facts=None):
        self.mode = parse_mode(mode)
        self.vectors = dict(vectors or {})
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.embedded = []
        self._manual = (
            self.mode != EmbeddingMode.OPENAI if manual_facts is None else manual_facts
        )

    @property
    def dimension(self):
        return mode_spec(self.mode).dimension

    def identifier(self):
        return f"fake:{self.mode.value}"

    def requires_manual_facts(self):
        return self._manual

    def vector_for(self, text):
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float64)
        return hashed_vector(f"{self.mode.value}:{text}", self.dimension)

    def embed_batch(self, texts):
        self.calls += 1
        if self.fail_on_call is not None and self.calls == self.fail_on_call:
            raise ProviderError("simulated provider outage")
        self.embedded.extend(texts)
        return [self.vector_for(t) for t in texts]

    def embed_one(self, text):
        return self.embed_batch([text])[0]


class TransportFailureProvider(FakeProvider):
    """Raises a plain RuntimeError (not a localmem error) on the N-th call."""

    def __init__(self, mode, fail_on_call=1):
        super().__init__(mode)
        self.fail_at = fail_on_call

    def embed_batch(self, texts):
        if self.calls + 1 == self.fail_at:
            self.calls += 1
            raise RuntimeError("connection reset by peer")
        return super().embed_batch(texts)


class MatrixProvider(FakeProvider):
    """Returns each vector as a 1xD matrix instead of a 1-D array."""

    def embed_batch(self, texts):
        return [v.reshape(1, -1) for v in super().embed_batch(texts)]


class FakeSplitter:
    """Splits on sentence boundaries, like a well-behaved LLM would."""

    def __init__(self):
        self.calls = 0

    def split(self, text):
        self.calls += 1
        return [s.strip() for s in text.split(".") if s.strip()]


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    s = MemoryStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def disk_store(tmp_path):
    """Create a disk-backed store for testing."""
    s = MemoryStore(db_path=str(tmp_path / "memory.db"))
    yield s
    s.close()


@pytest.fixture
def providers():
    """One fake provider per mode."""
    return {mode: FakeProvider(mode) for mode in EmbeddingMode}


@pytest.fixture
def make_engine(store, providers):
    """Factory: engine on the shared store with the given active mode."""

    def _make(mode=EmbeddingMode.LOCAL_MULTILINGUAL, splitter=None,
              context_id="default", validator=None, batch_sizes=None):
        manager = ModeManager(
            store,
            context_id,
            providers=providers,
            active_mode=mode,
            credential_validator=validator,
            batch_sizes=batch_sizes,
        )
        return MemoryEngine(store, manager, context_id=context_id, splitter=splitter)

    return _make


@pytest.fixture
def engine(make_engine):
    """Local multilingual engine without a splitter."""
    return make_engine()


@pytest.fixture
def openai_engine(make_engine):
    """OpenAI-mode engine with the fake splitter."""
    return make_engine(EmbeddingMode.OPENAI, splitter=FakeSplitter())
