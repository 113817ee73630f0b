"""
Pairwise cosine similarity over a batch of embeddings.

The matrix is O(n²) in both memory and time (n=5000 is ~200MB of float64),
which is fine for a few thousand questions but not beyond.
"""

import logging
from collections import Counter
from typing import Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine

logger = logging.getLogger(__name__)

INVALID_SIMILARITY = -1.0
DEFAULT_WARN_ITEMS = 5000


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns -1 when either vector has zero norm or the lengths differ.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape or a.ndim != 1:
        return INVALID_SIMILARITY

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return INVALID_SIMILARITY

    return float(np.dot(a, b) / (norm_a * norm_b))


def similarity_matrix(
    vectors: Sequence[Sequence[float]],
    warn_items: Optional[int] = DEFAULT_WARN_ITEMS,
) -> np.ndarray:
    """
    Build the symmetric n × n cosine similarity matrix.

    The upper triangle is computed and mirrored, so sim[i, j] and sim[j, i]
    are bit-identical. The diagonal is exactly 1.0. Rows whose vector has zero
    norm, or a length different from the batch's dominant length, get -1
    against every other item.

    Args:
        vectors: Embeddings, one per item
        warn_items: Log a warning above this many items (None disables)

    Returns:
        Array of shape (n, n)

    Raises:
        ValueError: If vectors is empty
    """
    n = len(vectors)
    if n == 0:
        raise ValueError("Cannot compute similarity of empty vector list")

    if warn_items is not None and n > warn_items:
        logger.warning(
            f"Computing {n}x{n} similarity matrix (~{n * n * 8 / 1e6:.0f}MB); "
            f"above {warn_items} items this gets slow"
        )

    lengths = [len(v) for v in vectors]
    dimension = Counter(lengths).most_common(1)[0][0]
    valid = np.array([length == dimension for length in lengths])

    matrix = np.zeros((n, dimension), dtype=np.float64)
    for i, vector in enumerate(vectors):
        if valid[i]:
            matrix[i] = np.asarray(vector, dtype=np.float64)

    valid &= np.linalg.norm(matrix, axis=1) > 0
    invalid_count = int(n - valid.sum())
    if invalid_count:
        logger.warning(f"{invalid_count} vectors have zero norm or wrong dimension")

    sim = np.full((n, n), INVALID_SIMILARITY, dtype=np.float64)
    valid_idx = np.flatnonzero(valid)
    if len(valid_idx):
        sim[np.ix_(valid_idx, valid_idx)] = pairwise_cosine(matrix[valid_idx])

    # Mirror the upper triangle so the matrix is exactly symmetric
    upper = np.triu_indices(n, k=1)
    sim[(upper[1], upper[0])] = sim[upper]
    np.fill_diagonal(sim, 1.0)

    return sim
