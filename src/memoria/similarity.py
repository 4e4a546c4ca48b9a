"""Cosine-similarity ranking over in-memory vectors."""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityHit:
    """An entry id with its raw cosine similarity in [-1, 1]."""

    id: str
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two vectors.

    Vectors need not be normalized. A zero-magnitude vector or a
    dimensionality mismatch yields 0.0.
    """
    if len(a) != len(b):
        logger.debug("Vector dimensions do not match: %d != %d", len(a), len(b))
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = dot / math.sqrt(norm_a * norm_b)
    # Floating point can push identical vectors just past 1
    return max(-1.0, min(1.0, similarity))


def rank(
    query: Sequence[float],
    entries: Iterable[tuple[str, Sequence[float]]],
) -> list[SimilarityHit]:
    """Rank (id, vector) entries by similarity to the query vector.

    Entries with a different dimensionality than the query are excluded.

    Args:
        query: The query vector.
        entries: Candidate (id, vector) pairs.

    Returns:
        Hits sorted by descending similarity; ties keep input order.
    """
    hits: list[SimilarityHit] = []
    skipped = 0
    for entry_id, vector in entries:
        if len(vector) != len(query):
            skipped += 1
            continue
        hits.append(SimilarityHit(entry_id, cosine_similarity(query, vector)))

    if skipped:
        logger.warning("Skipped %d vectors with mismatched dimensionality", skipped)

    hits.sort(key=lambda h: h.similarity, reverse=True)
    return hits
