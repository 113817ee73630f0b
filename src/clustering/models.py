"""Value types shared by the clustering stages."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

PLACEHOLDER_TOPIC = "Miscellaneous"


@dataclass(frozen=True)
class Item:
    """
    A unit of text to cluster (a question or a cancellation reason).

    `id` is derived from the exact text, so the same text always maps to the
    same item id across runs.
    """

    id: str
    text: str
    source_ref: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class ClusterParameters:
    """
    Knobs of the density clustering pass.

    Args:
        min_similarity: Cosine similarity for two items to be neighbors
        min_neighbor_count: Neighborhood size (seed included) needed to open a cluster
        max_cluster_size: Hard upper bound on members per cluster
        large_cluster_size_threshold: Member count after which the stricter floor applies
        large_cluster_similarity: Stricter average-similarity floor for large clusters
        noise_similarity_factor: Fraction of min_similarity a noise item needs to join a cluster
    """

    min_similarity: float
    min_neighbor_count: int
    max_cluster_size: int
    large_cluster_size_threshold: int = 20
    large_cluster_similarity: float = 0.97
    noise_similarity_factor: float = 0.9

    def __post_init__(self):
        if not -1.0 <= self.min_similarity <= 1.0:
            raise ValueError(f"min_similarity must be within [-1, 1], got {self.min_similarity}")
        if self.min_neighbor_count < 1:
            raise ValueError(f"min_neighbor_count must be >= 1, got {self.min_neighbor_count}")
        if self.max_cluster_size < 1:
            raise ValueError(f"max_cluster_size must be >= 1, got {self.max_cluster_size}")
        if self.large_cluster_size_threshold < 1:
            raise ValueError(
                f"large_cluster_size_threshold must be >= 1, got {self.large_cluster_size_threshold}"
            )

    @property
    def noise_threshold(self) -> float:
        return self.noise_similarity_factor * self.min_similarity

    def as_dict(self) -> Dict[str, Any]:
        return {
            'min_similarity': self.min_similarity,
            'min_neighbor_count': self.min_neighbor_count,
            'max_cluster_size': self.max_cluster_size,
            'large_cluster_size_threshold': self.large_cluster_size_threshold,
            'large_cluster_similarity': self.large_cluster_similarity,
            'noise_similarity_factor': self.noise_similarity_factor,
        }


@dataclass
class Cluster:
    """A topic cluster: members, their mean embedding and the member closest to it."""

    id: str
    label: int
    member_item_ids: List[str]
    centroid: np.ndarray
    representative_item_id: str
    topic_label: str = PLACEHOLDER_TOPIC

    @property
    def size(self) -> int:
        return len(self.member_item_ids)


@dataclass
class StoredCentroid:
    """Centroid of a persisted cluster, as read back for incremental assignment."""

    cluster_id: str
    centroid: np.ndarray
    member_count: int = 0
    topic_label: Optional[str] = None


@dataclass
class FAQEntry:
    """One row of the FAQ view: a cluster with its representative and the rest."""

    cluster_id: str
    topic: str
    member_count: int
    representative_text: Optional[str]
    representative_source: Dict[str, Any] = field(default_factory=dict)
    similar_items: List[Dict[str, Any]] = field(default_factory=list)
