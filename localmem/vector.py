"""
Vector helpers — normalization, similarity, and BLOB packing.

Vectors are persisted as little-endian float32 bytes. Every stored vector
is unit-normalized first, so the dot product equals cosine similarity.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

from localmem.errors import ValidationError

VectorLike = Union[Sequence[float], np.ndarray]

# float32 storage round-trip keeps norms within ~1e-6 of 1.0
UNIT_TOLERANCE = 1e-4

_DTYPE = np.dtype("<f4")


def as_array(vec: VectorLike) -> np.ndarray:
    """Coerce to a 1-D float64 array."""
    arr = np.asarray(vec, dtype=np.float64)
    if arr.ndim != 1:
        raise ValidationError(f"Expected a 1-D vector, got shape {arr.shape}")
    return arr


def norm(vec: VectorLike) -> float:
    """Euclidean (L2) norm."""
    return float(np.linalg.norm(as_array(vec)))


def normalize(vec: VectorLike) -> np.ndarray:
    """Scale to unit length. A zero vector is returned unchanged."""
    arr = as_array(vec)
    magnitude = np.linalg.norm(arr)
    if magnitude == 0:
        return arr
    return arr / magnitude


def is_unit(vec: VectorLike, tol: float = UNIT_TOLERANCE) -> bool:
    """True if ``|‖vec‖₂ - 1| <= tol``."""
    return abs(norm(vec) - 1.0) <= tol


def dot(a: VectorLike, b: VectorLike) -> float:
    """Dot product of two equal-length vectors."""
    return float(np.dot(as_array(a), as_array(b)))


def cosine(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity, computed independently of stored normalization."""
    a_arr, b_arr = as_array(a), as_array(b)
    denom = np.linalg.norm(a_arr) * np.linalg.norm(b_arr)
    if denom == 0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / denom)


def pack_vector(vec: VectorLike) -> bytes:
    """Pack to float32 little-endian bytes."""
    return np.asarray(vec, dtype=_DTYPE).tobytes()


def unpack_vector(data: bytes, dim: int) -> np.ndarray:
    """Unpack float32 little-endian bytes into a ``dim``-length array."""
    arr = np.frombuffer(data, dtype=_DTYPE)
    if arr.shape[0] != dim:
        raise ValidationError(
            f"Vector blob holds {arr.shape[0]} floats, expected {dim}"
        )
    return arr.astype(np.float64)


def stack(blobs: Sequence[bytes], dim: int) -> np.ndarray:
    """Unpack many blobs into an ``(N, dim)`` matrix."""
    if not blobs:
        return np.zeros((0, dim), dtype=np.float64)
    return np.vstack([unpack_vector(b, dim) for b in blobs])
