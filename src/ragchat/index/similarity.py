"""Vector similarity and ranking."""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np

from ragchat.errors import DimensionMismatch
from ragchat.models import Chunk, ScoredChunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Returns NaN when either vector has zero length; callers treat that as
    "no match".
    """
    left = np.asarray(a, dtype="float64")
    right = np.asarray(b, dtype="float64")
    if left.shape != right.shape:
        raise DimensionMismatch(left.size, right.size)

    norm = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if norm == 0.0:
        return math.nan
    score = float(np.dot(left, right)) / norm
    return max(-1.0, min(1.0, score))


def rank_by_similarity(
    query_vector: Sequence[float], candidates: Sequence[Chunk], k: int | None = None
) -> List[ScoredChunk]:
    """Return candidates ordered by descending similarity to ``query_vector``.

    Ties keep their original order. Candidates with an undefined (NaN)
    similarity are left out.
    """
    if not candidates or (k is not None and k <= 0):
        return []

    query = np.asarray(query_vector, dtype="float64")
    for chunk in candidates:
        if len(chunk.embedding) != query.size:
            raise DimensionMismatch(query.size, len(chunk.embedding))

    matrix = np.asarray([chunk.embedding for chunk in candidates], dtype="float64")
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, (matrix @ query) / norms, np.nan)
    scores = np.clip(scores, -1.0, 1.0)

    valid = np.flatnonzero(~np.isnan(scores))
    order = valid[np.argsort(-scores[valid], kind="stable")]
    if k is not None:
        order = order[:k]

    return [ScoredChunk(chunk=candidates[idx], similarity=float(scores[idx])) for idx in order]
