from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .embedding import EmbeddingLike, as_embedding
from .exceptions import InvalidEmbeddingLength


@dataclass(frozen=True)
class Matched:
    identity: Any
    distance: float
    confidence: float

    @property
    def matched(self) -> bool:
        return True


@dataclass(frozen=True)
class Unmatched:
    @property
    def matched(self) -> bool:
        return False


MatchResult = Union[Matched, Unmatched]
CatalogEntry = Tuple[Any, EmbeddingLike]


def euclidean_distance(a: EmbeddingLike, b: EmbeddingLike) -> float:
    va = as_embedding(a, label="left operand")
    vb = as_embedding(b, dimension=int(va.size), label="right operand")
    return float(np.sqrt(np.sum((va - vb) ** 2)))


def confidence_from_distance(distance: float, threshold: float) -> float:
    """Map a distance inside the threshold onto 0-100 (100 = identical)."""
    if threshold <= 0.0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    score = (1.0 - float(distance) / float(threshold)) * 100.0
    return max(0.0, min(100.0, score))


def match(
    query: EmbeddingLike,
    catalog: Iterable[CatalogEntry],
    threshold: float,
    dimension: Optional[int] = None,
) -> MatchResult:
    """Return the nearest catalog identity when it lies within ``threshold``.

    An empty catalog is Unmatched whatever the query or threshold. Otherwise
    every catalog embedding must share the query's length (or ``dimension``
    when given); the first one that does not raises InvalidEmbeddingLength.
    Equal minimum distances resolve to the earliest catalog entry, and entries
    at a non-finite distance never match.
    """
    entries: Sequence[CatalogEntry] = list(catalog)
    if not entries:
        return Unmatched()

    if threshold <= 0.0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    q = as_embedding(query, dimension=dimension, label="query")

    identities: List[Any] = []
    rows: List[np.ndarray] = []
    for index, (identity, embedding) in enumerate(entries):
        vector = np.asarray(embedding, dtype=np.float64).reshape(-1)
        if vector.size != q.size:
            raise InvalidEmbeddingLength(
                expected=int(q.size),
                actual=int(vector.size),
                label=f"catalog entry {index} ({identity!r})",
            )
        identities.append(identity)
        rows.append(vector)

    matrix = np.vstack(rows)
    distances = np.sqrt(np.sum((matrix - q) ** 2, axis=1))
    # NaN would otherwise win argmin
    distances = np.where(np.isfinite(distances), distances, np.inf)

    # argmin returns the first index among equal minima
    best_idx = int(np.argmin(distances))
    best = float(distances[best_idx])
    if best <= threshold:
        return Matched(
            identity=identities[best_idx],
            distance=best,
            confidence=confidence_from_distance(best, threshold),
        )
    return Unmatched()


def nearest_identities(
    query: EmbeddingLike,
    catalog: Iterable[CatalogEntry],
    limit: int = 5,
) -> List[Tuple[Any, float]]:
    """Return up to ``limit`` (identity, distance) pairs, closest first."""
    q = as_embedding(query, label="query")
    scored: List[Tuple[Any, float]] = []
    for identity, embedding in catalog:
        scored.append((identity, euclidean_distance(q, embedding)))
    scored.sort(key=lambda item: item[1])
    return scored[: max(0, int(limit))]
