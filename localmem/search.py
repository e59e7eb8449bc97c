"""
Similarity search over one vector namespace.

Full scan: every fact of the context that has a vector in the namespace is
scored as

    score = dot(query, fact_vector) + boost_lambda * tag_matches

where tag_matches counts boost tags that overlap (substring either way,
case-insensitive) with any tag of the owning memory.  Boosting only
reorders; a fact with zero matches is never excluded.

Results are deduplicated per memory: a memory is ranked by its best fact.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from localmem.errors import ValidationError
from localmem.modes import namespace_for
from localmem.types import Fact, Memory, MemoryHit, ScoredFact
from localmem.vector import VectorLike, normalize, stack

logger = logging.getLogger(__name__)

DEFAULT_BOOST_LAMBDA = 0.1
DEFAULT_LIMIT = 10

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def tag_match_count(boost_tags: Sequence[str], memory_tags: Sequence[str]) -> int:
    """Number of boost tags overlapping any memory tag.

    A boost tag counts at most once.  Overlap means one lowercased string
    contains the other.
    """
    if not boost_tags or not memory_tags:
        return 0
    lowered = [t.lower() for t in memory_tags]
    count = 0
    for boost in boost_tags:
        b = boost.lower()
        if any(b in m or m in b for m in lowered):
            count += 1
    return count


def score_rows(
    query: VectorLike,
    rows: Sequence[Tuple[Fact, Memory, bytes]],
    boost_tags: Optional[Sequence[str]] = None,
    boost_lambda: float = DEFAULT_BOOST_LAMBDA,
    dimension: Optional[int] = None,
) -> List[ScoredFact]:
    """Score (fact, memory, blob) rows against a query vector.

    The result is sorted by descending score; equal scores keep row order.
    """
    q = normalize(query)
    dim = dimension if dimension is not None else q.shape[0]
    if q.shape[0] != dim:
        raise ValidationError(
            f"Query vector has dimension {q.shape[0]}, namespace expects {dim}"
        )
    if not rows:
        return []

    matrix = stack([blob for _, _, blob in rows], dim)
    sims = matrix @ q

    boost_tags = list(boost_tags or [])
    match_cache: Dict[str, int] = {}
    scored: List[ScoredFact] = []
    for (fact, memory, _), sim in zip(rows, sims):
        matches = match_cache.get(memory.id)
        if matches is None:
            matches = tag_match_count(boost_tags, memory.tags)
            match_cache[memory.id] = matches
        similarity = float(sim)
        scored.append(ScoredFact(
            fact=fact,
            memory=memory,
            score=similarity + boost_lambda * matches,
            similarity=similarity,
            tag_matches=matches,
        ))

    # sorted() is stable: ties keep row order
    return sorted(scored, key=lambda s: -s.score)


def group_by_memory(scored: Sequence[ScoredFact], limit: int) -> List[MemoryHit]:
    """Collapse scored facts to one hit per memory, best score first."""
    hits: Dict[str, MemoryHit] = {}
    for item in scored:
        hit = hits.get(item.memory.id)
        if hit is None:
            hits[item.memory.id] = MemoryHit(
                memory=item.memory, score=item.score, facts=[item],
            )
        else:
            hit.facts.append(item)
            if item.score > hit.score:
                hit.score = item.score
    ordered = sorted(hits.values(), key=lambda h: -h.score)
    return ordered[:limit]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def search_facts(
    store,
    context_id: str,
    query_vector: VectorLike,
    mode,
    limit: int = DEFAULT_LIMIT,
    boost_tags: Optional[Sequence[str]] = None,
    boost_lambda: float = DEFAULT_BOOST_LAMBDA,
) -> List[MemoryHit]:
    """Search one namespace of a context and return per-memory hits.

    Args:
        store: MemoryStore to read from.
        context_id: Tenant whose facts are scanned.
        query_vector: Query embedding from the provider of ``mode``.
        mode: Embedding mode (namespace) to search.
        limit: Maximum number of memories returned.
        boost_tags: Tags that raise the score of overlapping memories.
        boost_lambda: Score added per matching boost tag.

    Raises:
        ValidationError: On bad limit or query dimension mismatch.
    """
    if limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit}")
    ns = namespace_for(mode)
    query = np.asarray(query_vector, dtype=np.float64)
    if query.ndim != 1 or query.shape[0] != ns.dimension:
        raise ValidationError(
            f"Query vector has shape {query.shape}, namespace "
            f"{ns.mode.value} expects ({ns.dimension},)"
        )
    rows = store.search_rows(ns.mode, context_id)
    scored = score_rows(query, rows, boost_tags, boost_lambda, ns.dimension)
    hits = group_by_memory(scored, limit)
    logger.debug(
        "search %s: %d facts scanned, %d memories returned",
        ns.mode.value, len(rows), len(hits),
    )
    return hits
