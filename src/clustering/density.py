"""
Connectivity-ordered density clustering over a precomputed similarity matrix.

A DBSCAN variant tuned for short, near-duplicate texts:
- seeds are visited most-connected first, so dense topics claim their members
  before loosely related items can chain clusters together
- a candidate joins a cluster only if its average similarity to all current
  members clears the threshold, which gets stricter once a cluster is large
- clusters never exceed max_cluster_size
- leftover noise is attached to the most similar labeled item or becomes a
  singleton, so every item ends up in exactly one cluster
"""

import logging
from collections import deque
from typing import Dict, List

import numpy as np

from .models import ClusterParameters

logger = logging.getLogger(__name__)

UNLABELED = -1


class DensityClusterer:
    """
    Modified DBSCAN producing a total partition.

    Args:
        params: ClusterParameters for this pass

    Attributes (set after fit_predict):
        labels_: Cluster label per item, numbered from 0 in creation order
        n_clusters_found: Number of distinct clusters
        n_dense_clusters: Clusters opened from a dense seed (before noise handling)
        n_singletons: Clusters with exactly one member
    """

    def __init__(self, params: ClusterParameters):
        self.params = params
        self.labels_ = None
        self.n_clusters_found = 0
        self.n_dense_clusters = 0
        self.n_singletons = 0

    def fit_predict(self, similarity: np.ndarray) -> np.ndarray:
        """
        Cluster items given their pairwise similarity.

        Args:
            similarity: Symmetric (n, n) cosine similarity matrix

        Returns:
            Array of n integer labels; every item is labeled

        Raises:
            ValueError: If the matrix is empty or not square
        """
        if similarity.ndim != 2 or similarity.shape[0] != similarity.shape[1]:
            raise ValueError(f"Similarity matrix must be square, got shape {similarity.shape}")
        n = similarity.shape[0]
        if n == 0:
            raise ValueError("Cannot cluster empty similarity matrix")

        p = self.params
        logger.debug(
            f"Density clustering {n} items: min_similarity={p.min_similarity}, "
            f"min_neighbors={p.min_neighbor_count}, max_size={p.max_cluster_size}"
        )

        processed = np.zeros(n, dtype=bool)
        labels = np.full(n, UNLABELED, dtype=int)
        sizes: List[int] = []

        for seed in self._seed_order(similarity):
            if processed[seed]:
                continue

            neighbors = self._neighbors(similarity, seed, processed)
            if len(neighbors) < p.min_neighbor_count:
                # Noise for now, resolved after all seeds are visited
                continue

            label = len(sizes)
            size = self._expand(similarity, seed, neighbors, label, labels, processed)
            sizes.append(size)
            logger.debug(f"Created cluster {label} with {size} items")

        self.n_dense_clusters = len(sizes)
        self._resolve_noise(similarity, labels, processed, sizes)

        self.labels_ = labels
        self._compute_statistics(sizes)
        return labels

    def _seed_order(self, similarity: np.ndarray) -> np.ndarray:
        """Item indices by descending mean similarity to their neighbors (stable)."""
        min_sim = self.params.min_similarity
        mask = similarity >= min_sim
        np.fill_diagonal(mask, False)

        counts = mask.sum(axis=1)
        sums = np.where(mask, similarity, 0.0).sum(axis=1)
        connectivity = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)

        return np.argsort(-connectivity, kind='stable')

    def _neighbors(self, similarity: np.ndarray, index: int, processed: np.ndarray) -> List[int]:
        # The item itself qualifies while unprocessed (diagonal is 1.0)
        candidates = (similarity[index] >= self.params.min_similarity) & ~processed
        return np.flatnonzero(candidates).tolist()

    def _expand(
        self,
        similarity: np.ndarray,
        seed: int,
        neighbors: List[int],
        label: int,
        labels: np.ndarray,
        processed: np.ndarray,
    ) -> int:
        """Grow one cluster from a seed through a FIFO queue. Returns its size."""
        p = self.params
        processed[seed] = True
        labels[seed] = label
        members = [seed]
        # Running sum of similarities to members, so each check is O(1) per candidate
        member_sim_sum = similarity[seed].copy()

        queue = deque(neighbors)
        queued = set(neighbors)

        while queue and len(members) < p.max_cluster_size:
            current = queue.popleft()
            queued.discard(current)
            if processed[current]:
                continue

            threshold = p.min_similarity
            if len(members) >= p.large_cluster_size_threshold:
                threshold = max(p.min_similarity, p.large_cluster_similarity)

            average = member_sim_sum[current] / len(members)
            if average < threshold:
                # Rejected candidates stay unprocessed and may seed or join later
                continue

            processed[current] = True
            labels[current] = label
            members.append(current)
            member_sim_sum += similarity[current]

            if len(members) >= p.max_cluster_size:
                break

            current_neighbors = self._neighbors(similarity, current, processed)
            if len(current_neighbors) >= p.min_neighbor_count:
                for neighbor in current_neighbors:
                    if neighbor not in queued:
                        queue.append(neighbor)
                        queued.add(neighbor)

        return len(members)

    def _resolve_noise(
        self,
        similarity: np.ndarray,
        labels: np.ndarray,
        processed: np.ndarray,
        sizes: List[int],
    ) -> None:
        """Attach each unprocessed item to its most similar labeled item, or make it a singleton."""
        p = self.params
        noise = np.flatnonzero(~processed)
        if len(noise) == 0:
            return

        attached = 0
        for index in noise:
            best_label = UNLABELED
            best_sim = p.noise_threshold

            for j in np.flatnonzero(labels != UNLABELED):
                candidate = labels[j]
                # Full clusters cannot take more members
                if sizes[candidate] >= p.max_cluster_size:
                    continue
                if similarity[index, j] > best_sim:
                    best_sim = similarity[index, j]
                    best_label = candidate

            if best_label != UNLABELED:
                labels[index] = best_label
                sizes[best_label] += 1
                attached += 1
            else:
                labels[index] = len(sizes)
                sizes.append(1)

        logger.debug(
            f"Resolved {len(noise)} noise items: {attached} attached, "
            f"{len(noise) - attached} singletons"
        )

    def _compute_statistics(self, sizes: List[int]):
        self.n_clusters_found = len(sizes)
        self.n_singletons = sum(1 for size in sizes if size == 1)
        logger.debug(
            f"Clustering complete: {self.n_clusters_found} clusters "
            f"({self.n_dense_clusters} dense, {self.n_singletons} singletons)"
        )


def cluster_sizes(labels: np.ndarray) -> Dict[int, int]:
    """Map label -> member count."""
    unique, counts = np.unique(labels, return_counts=True)
    return {int(label): int(count) for label, count in zip(unique, counts)}
