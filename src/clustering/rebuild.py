"""
Full rebuild of the clusters for one item kind.

Workflow:
1. Fetch every upstream record and deduplicate texts
2. Embed texts (cache first, provider for misses)
3. Cluster with parameter search, compute centroids and representatives
4. Label clusters with the LLM
5. Replace the stored clusters and items

Nothing is written before step 5, so cancelling earlier leaves the store as
it was. The writer lock is held for the whole run so incremental inserts
cannot interleave with the rebuild. Its lease is renewed between stages and
before each labeling call, and ownership is confirmed before the write.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from embed import CachedEmbedder

from .config import ClusteringConfig
from .engine import cluster_items
from .exceptions import RebuildCancelled
from .normalizer import collect_items
from .sources import RecordSource
from .store import ClusterStore
from .topic_labeler import TopicLabeler

logger = logging.getLogger(__name__)

TOTAL_STEPS = 5


@dataclass
class RebuildReport:
    """Summary of a rebuild run."""

    kind: str
    item_count: int = 0
    embedded_count: int = 0
    embedding_failures: List[str] = field(default_factory=list)
    cluster_count: int = 0
    singleton_count: int = 0
    params: Dict[str, Any] = field(default_factory=dict)
    trials: List[Dict[str, Any]] = field(default_factory=list)
    within_tolerance: bool = True
    written_clusters: int = 0
    written_items: int = 0
    failed_clusters: List[str] = field(default_factory=list)
    failed_items: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class FullRebuild:
    """
    Recompute and replace every cluster of an item kind.

    Args:
        config: Clustering config
        source: Upstream record source
        embedder: Cache-backed embedder
        labeler: Topic labeler
        store: Cluster store
        search: Run the parameter grid search
        cancel_event: Set from another thread to stop between stages
    """

    def __init__(
        self,
        config: ClusteringConfig,
        source: RecordSource,
        embedder: CachedEmbedder,
        labeler: TopicLabeler,
        store: ClusterStore,
        search: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.source = source
        self.embedder = embedder
        self.labeler = labeler
        self.store = store
        self.search = search
        self.cancel_event = cancel_event or threading.Event()

    def _checkpoint(self, stage: str) -> None:
        if self.cancel_event.is_set():
            logger.warning(f"Rebuild cancelled before {stage}; nothing was written")
            raise RebuildCancelled(stage)
        # Confirm we still own the store right before writing
        self.store.renew_lock(force=(stage == "writing"))

    def run(self) -> RebuildReport:
        """
        Execute the rebuild.

        Raises:
            WriterLockBusy: If another writer holds the store
            RebuildCancelled: If cancel_event was set before the write stage
            WriterLockLost: If the lease lapsed and another writer took over
            StoreWriteError: If clearing the existing clusters fails
        """
        kind = self.config.kind.value
        report = RebuildReport(kind=kind)

        logger.info("=" * 60)
        logger.info(f"CLUSTER REBUILD ({kind}) - START")
        logger.info("=" * 60)
        if self.store.dry_run:
            logger.warning("DRY RUN MODE - No writes will be performed")

        start_time = time.time()

        with self.store.writer_lock('rebuild'):
            logger.info(f"\n[Step 1/{TOTAL_STEPS}] Fetching {self.config.item_noun}...")
            items = collect_items(self.source.fetch_records())
            report.item_count = len(items)
            if not items:
                logger.error(f"No {self.config.item_noun} found. Aborting.")
                return report

            self._checkpoint("embedding")
            logger.info(f"\n[Step 2/{TOTAL_STEPS}] Embedding {len(items)} {self.config.item_noun}...")
            result = self.embedder.embed([item.text for item in items])
            self.embedder.cache.save()

            report.embedding_failures = [items[i].id for i in result.failed_indices]
            if report.embedding_failures:
                logger.warning(
                    f"{len(report.embedding_failures)} items could not be embedded and are left out"
                )
            embedded = [(items[i], result.vectors[i]) for i in result.ok_indices]
            report.embedded_count = len(embedded)
            if not embedded:
                logger.error("No embeddings available. Aborting.")
                return report

            clustered_items = [item for item, _ in embedded]
            vectors = [vector for _, vector in embedded]

            self._checkpoint("clustering")
            logger.info(f"\n[Step 3/{TOTAL_STEPS}] Clustering {len(clustered_items)} embeddings...")
            outcome = cluster_items(clustered_items, vectors, self.config, search=self.search)
            clusters = outcome.clusters
            report.cluster_count = len(clusters)
            report.singleton_count = sum(1 for c in clusters if c.size == 1)
            report.params = outcome.params.as_dict()
            if outcome.search is not None:
                report.trials = [trial.as_dict() for trial in outcome.search.trials]
                report.within_tolerance = outcome.search.within_tolerance

            self._checkpoint("labeling")
            logger.info(f"\n[Step 4/{TOTAL_STEPS}] Labeling {len(clusters)} clusters...")
            texts_by_id = {item.id: item.text for item in clustered_items}
            self.labeler.label_clusters(clusters, texts_by_id, before_each=self.store.renew_lock)

            self._checkpoint("writing")
            logger.info(f"\n[Step 5/{TOTAL_STEPS}] Replacing stored clusters...")
            items_by_id = {item.id: item for item in clustered_items}
            vectors_by_id = {item.id: vector for item, vector in embedded}
            written = self.store.replace_all(clusters, items_by_id, vectors_by_id)

            report.written_clusters = written.written_clusters
            report.written_items = written.written_items
            report.failed_clusters = written.failed_clusters
            report.failed_items = written.failed_items

        report.elapsed_seconds = time.time() - start_time

        logger.info("\n" + "=" * 60)
        logger.info(f"CLUSTER REBUILD ({kind}) - COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Total time: {report.elapsed_seconds:.2f} seconds")
        logger.info(f"Items clustered: {report.embedded_count}/{report.item_count}")
        logger.info(f"Clusters: {report.cluster_count} ({report.singleton_count} singletons)")
        logger.info(f"Written: {report.written_clusters} clusters, {report.written_items} items")
        if report.failed_clusters:
            logger.warning(f"Failed clusters: {len(report.failed_clusters)}")
        logger.info("=" * 60)

        return report
