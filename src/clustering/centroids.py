"""Centroid and representative selection for clustered items."""

import hashlib
import logging
from typing import Dict, List, Sequence

import numpy as np

from .models import Cluster, Item
from .similarity import cosine_similarity

logger = logging.getLogger(__name__)


def compute_centroid(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Per-dimension mean of member embeddings."""
    if len(vectors) == 0:
        raise ValueError("Cannot compute centroid of an empty cluster")
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0)


def choose_representative(vectors: Sequence[Sequence[float]], centroid: np.ndarray) -> int:
    """
    Index of the member most similar to the centroid.

    Ties go to the first member.
    """
    best_index = 0
    best_sim = -np.inf
    for index, vector in enumerate(vectors):
        sim = cosine_similarity(vector, centroid)
        if sim > best_sim:
            best_sim = sim
            best_index = index
    return best_index


def cluster_id_for(member_item_ids: Sequence[str]) -> str:
    """Deterministic cluster id from its (ordered) members."""
    digest = hashlib.sha256("\n".join(member_item_ids).encode('utf-8'))
    return digest.hexdigest()[:20]


def build_clusters(
    items: Sequence[Item],
    vectors: Sequence[Sequence[float]],
    labels: Sequence[int],
) -> List[Cluster]:
    """
    Group items by label and compute centroid and representative per group.

    Members keep input order. Clusters are returned largest first, ties in
    label order.

    Args:
        items: Clustered items
        vectors: Embedding per item
        labels: Cluster label per item (total partition)

    Returns:
        List of Cluster with placeholder topic labels
    """
    if not (len(items) == len(vectors) == len(labels)):
        raise ValueError(
            f"Length mismatch: {len(items)} items, {len(vectors)} vectors, {len(labels)} labels"
        )

    members: Dict[int, List[int]] = {}
    for index, label in enumerate(labels):
        members.setdefault(int(label), []).append(index)

    clusters = []
    for label, indices in members.items():
        member_vectors = [vectors[i] for i in indices]
        centroid = compute_centroid(member_vectors)
        representative = indices[choose_representative(member_vectors, centroid)]
        member_ids = [items[i].id for i in indices]

        clusters.append(Cluster(
            id=cluster_id_for(member_ids),
            label=label,
            member_item_ids=member_ids,
            centroid=centroid,
            representative_item_id=items[representative].id,
        ))

    clusters.sort(key=lambda c: (-c.size, c.label))
    logger.info(f"Built {len(clusters)} clusters from {len(items)} items")
    return clusters
