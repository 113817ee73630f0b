"""Embeddings in, clusters out: similarity, density clustering and centroids."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .centroids import build_clusters
from .config import ClusteringConfig
from .density import DensityClusterer
from .models import Cluster, ClusterParameters, Item
from .parameter_search import ParameterSearch, SearchResult
from .similarity import similarity_matrix

logger = logging.getLogger(__name__)


@dataclass
class ClusteringOutcome:
    clusters: List[Cluster]
    params: ClusterParameters
    search: Optional[SearchResult] = None


def cluster_items(
    items: Sequence[Item],
    vectors: Sequence[Sequence[float]],
    config: ClusteringConfig,
    search: bool = True,
) -> ClusteringOutcome:
    """
    Partition items into clusters.

    Args:
        items: Items to cluster
        vectors: Embedding per item, same order
        config: Clustering config for the item kind
        search: Run the parameter grid search (else use the base parameters)

    Returns:
        ClusteringOutcome with clusters (placeholder topics) and the parameters used

    Raises:
        ValueError: If there are no items or the lengths differ
    """
    if not items:
        raise ValueError("Cannot cluster an empty item list")
    if len(items) != len(vectors):
        raise ValueError(f"Got {len(vectors)} vectors for {len(items)} items")

    similarity = similarity_matrix(vectors, warn_items=config.similarity_warn_items)

    if search:
        result = ParameterSearch(
            grid=config.parameter_grid(),
            target_cluster_count=config.target_cluster_count,
            target_tolerance=config.target_tolerance,
            early_stop_distance=config.early_stop_distance,
            early_stop_min_score=config.early_stop_min_score,
            max_singleton_fraction=config.max_singleton_fraction,
        ).search(similarity)
        params, labels = result.params, result.labels
    else:
        result = None
        params = config.base_parameters()
        labels = DensityClusterer(params).fit_predict(similarity)

    logger.info(
        f"Selected similarity={params.min_similarity}, min_neighbors={params.min_neighbor_count}, "
        f"max_size={params.max_cluster_size}"
    )

    clusters = build_clusters(items, vectors, labels)
    return ClusteringOutcome(clusters=clusters, params=params, search=result)
