"""Brute-force cosine similarity ranking.

Every stored vector is compared with the query; there is no index structure.
The corpus is expected to stay in the low thousands of passages, where a
single numpy matrix-vector product is faster than building anything smarter.
"""
from typing import List, Mapping, Optional, Sequence, Tuple
import numpy as np
import structlog

logger = structlog.get_logger()

Vector = Sequence[float]


def vector_norm(vector: Vector) -> float:
    """Euclidean norm of a vector."""
    return float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))


def cosine_similarity(
    a: Vector,
    b: Vector,
    norm_a: Optional[float] = None,
    norm_b: Optional[float] = None,
) -> float:
    """Cosine similarity between two vectors of the same dimension.

    Args:
        a: First vector
        b: Second vector
        norm_a: Precomputed norm of ``a`` (computed if not provided)
        norm_b: Precomputed norm of ``b`` (computed if not provided)

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero norm

    Raises:
        ValueError: If the dimensions differ
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    if vec_a.shape != vec_b.shape:
        raise ValueError(
            f"Dimension mismatch: {vec_a.shape[0]} vs {vec_b.shape[0]}"
        )

    norm_a = float(np.linalg.norm(vec_a)) if norm_a is None else norm_a
    norm_b = float(np.linalg.norm(vec_b)) if norm_b is None else norm_b

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def score(query: Vector, corpus: Mapping[str, Vector]) -> List[Tuple[str, float]]:
    """Score every corpus entry against the query, most similar first.

    Ties keep the corpus iteration order (the sort is stable).

    Args:
        query: Query vector
        corpus: Mapping from passage text to its vector

    Returns:
        List of (text, similarity) pairs sorted by descending similarity

    Raises:
        ValueError: If any corpus vector's dimension differs from the query's
    """
    if not corpus:
        return []

    texts = list(corpus.keys())
    query_vec = np.asarray(query, dtype=np.float64)
    try:
        matrix = np.asarray([corpus[text] for text in texts], dtype=np.float64)
    except ValueError as e:
        raise ValueError(f"Corpus vectors have inconsistent dimensions: {e}") from e

    if matrix.ndim != 2 or matrix.shape[1] != query_vec.shape[0]:
        raise ValueError(
            f"Dimension mismatch: query has {query_vec.shape[0]}, "
            f"corpus has {matrix.shape[-1]}"
        )

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
    dots = matrix @ query_vec
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(norms == 0, 0.0, dots / norms)
    similarities = np.clip(similarities, -1.0, 1.0)

    scored = list(zip(texts, similarities.tolist()))
    scored.sort(key=lambda pair: pair[1], reverse=True)

    logger.debug(
        "corpus_ranked",
        corpus_size=len(scored),
        top_similarity=scored[0][1],
    )

    return scored


def rank(query: Vector, corpus: Mapping[str, Vector]) -> List[str]:
    """Order corpus texts by descending cosine similarity to the query.

    The result is a permutation of the corpus keys; an empty corpus gives an
    empty list.
    """
    return [text for text, _ in score(query, corpus)]
