"""
Incremental assignment of newly observed items to existing clusters.

New items are compared only against stored centroids, so adding a question
costs one embedding and one pass over the clusters instead of a rebuild.
Items that match no cluster well enough stay unclustered until the next
rebuild picks them up.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from embed import CachedEmbedder

from .config import ClusteringConfig
from .models import Item, StoredCentroid
from .normalizer import collect_items
from .similarity import cosine_similarity
from .sources import RecordSource
from .store import ClusterStore

logger = logging.getLogger(__name__)

ADDED = "added"
DUPLICATE = "duplicate"
UNCLUSTERED = "unclustered"
FAILED = "failed"


def find_best_cluster(
    vector: Sequence[float],
    centroids: Sequence[StoredCentroid],
) -> Tuple[Optional[StoredCentroid], float]:
    """Most similar centroid and its similarity (first one wins ties)."""
    best: Optional[StoredCentroid] = None
    best_sim = -1.0
    for stored in centroids:
        sim = cosine_similarity(vector, stored.centroid)
        if best is None or sim > best_sim:
            best = stored
            best_sim = sim
    return best, best_sim


@dataclass
class IncrementalReport:
    added: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    unclustered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def record(self, item: Item, outcome: str) -> None:
        {
            ADDED: self.added,
            DUPLICATE: self.duplicates,
            UNCLUSTERED: self.unclustered,
            FAILED: self.failed,
        }[outcome].append(item.id)


class IncrementalAssigner:
    """
    Append new items to the best-matching stored cluster.

    Args:
        config: Clustering config (acceptance threshold, running mean option)
        store: Cluster store for the item kind
        embedder: Cache-backed embedder
        source: Upstream record source (needed by run())
    """

    def __init__(
        self,
        config: ClusteringConfig,
        store: ClusterStore,
        embedder: CachedEmbedder,
        source: Optional[RecordSource] = None,
    ):
        self.config = config
        self.store = store
        self.embedder = embedder
        self.source = source
        self._centroids: Optional[List[StoredCentroid]] = None

    @property
    def centroids(self) -> List[StoredCentroid]:
        if self._centroids is None:
            self._centroids = self.store.load_centroids()
        return self._centroids

    def reload_centroids(self) -> None:
        self._centroids = None

    def assign(self, item: Item) -> str:
        """
        Assign one item.

        The caller must hold the writer lock (see add_items()).

        Returns:
            One of "added", "duplicate", "unclustered", "failed"
        """
        if self.store.has_item_text(item.text):
            logger.debug(f"Item already stored, skipping: {item.text[:60]}")
            return DUPLICATE

        result = self.embedder.embed([item.text])
        vector = result.vectors[0]
        if vector is None:
            logger.warning(f"Could not embed item, skipping: {result.errors.get(0)}")
            return FAILED

        best, similarity = find_best_cluster(vector, self.centroids)
        if best is None:
            logger.info("No stored clusters to assign to")
            return UNCLUSTERED

        if similarity < self.config.acceptance_threshold:
            logger.info(
                f"Best similarity {similarity:.3f} below threshold "
                f"{self.config.acceptance_threshold}, leaving unclustered: {item.text[:60]}"
            )
            return UNCLUSTERED

        new_centroid = None
        if self.config.running_mean_centroids:
            n = best.member_count
            new_centroid = (best.centroid * n + np.asarray(vector, dtype=np.float64)) / (n + 1)

        try:
            appended = self.store.append_item(item, best.cluster_id, vector, new_centroid=new_centroid)
        except Exception as e:
            logger.error(f"Failed to add item to cluster {best.cluster_id}: {e}")
            return FAILED

        if not appended:
            return DUPLICATE

        best.member_count += 1
        if new_centroid is not None:
            best.centroid = new_centroid

        logger.info(f"Added to cluster {best.cluster_id} ({best.topic_label}), similarity {similarity:.3f}")
        return ADDED

    def assign_items(self, items: Sequence[Item]) -> IncrementalReport:
        """Assign items in order. The caller must hold the writer lock."""
        report = IncrementalReport()
        for item in items:
            self.store.renew_lock()
            report.record(item, self.assign(item))
        return report

    def _assign_locked(self, items: Sequence[Item]) -> IncrementalReport:
        self.reload_centroids()
        report = self.assign_items(items)
        self.embedder.cache.save()
        return report

    def add_items(self, items: Sequence[Item]) -> IncrementalReport:
        """
        Assign items under the writer lock, against freshly loaded centroids.

        Raises:
            WriterLockBusy: If a rebuild holds the store
        """
        with self.store.writer_lock('incremental'):
            return self._assign_locked(items)

    def run(self, limit: Optional[int] = None) -> IncrementalReport:
        """
        Assign texts from the most recently analyzed posts.

        Args:
            limit: Number of recent records to pull (config.recent_limit if None)

        Raises:
            WriterLockBusy: If a rebuild holds the store
        """
        if self.source is None:
            raise ValueError("A record source is required to run incremental assignment")

        limit = limit or self.config.recent_limit
        logger.info(f"Assigning {self.config.item_noun} from the {limit} most recent posts")

        with self.store.writer_lock('incremental'):
            items = collect_items(self.source.fetch_recent(limit))
            report = self._assign_locked(items)

        logger.info(
            f"Incremental assignment complete: {len(report.added)} added, "
            f"{len(report.duplicates)} already stored, {len(report.unclustered)} unclustered, "
            f"{len(report.failed)} failed"
        )
        return report
