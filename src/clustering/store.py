"""
Firestore persistence for clusters and clustered items.

Layout per item kind (collection names come from ClusteringConfig):

    {clusters_collection}/{cluster_id}
        topic, centroid (Vector), member_count, representative_item_id,
        representative_text, created_at, updated_at
    {items_collection}/{item_id}
        text, cluster_id, embedding (Vector), source_ref, created_at
    cluster_locks/{kind}
        owner, mode, acquired_at, expires_at

Item ids are digests of the exact text, so "is this text already stored" is a
single document read.

Two write modes share one writer lock: a full rebuild clears both
collections and inserts the new partition; incremental append only adds an
item and bumps its cluster's member_count.
"""

import logging
import os
import socket
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np
from google.api_core.exceptions import AlreadyExists, FailedPrecondition, NotFound
from google.cloud import firestore
from google.cloud.firestore_v1 import Increment
from google.cloud.firestore_v1.vector import Vector

from common.retry import RetryPolicy

from .config import ClusteringConfig
from .exceptions import StoreWriteError, WriterLockBusy, WriterLockLost
from .models import Cluster, FAQEntry, Item, StoredCentroid
from .normalizer import item_id_for

logger = logging.getLogger(__name__)

# Firestore batch limit
MAX_BATCH_OPERATIONS = 500


def vector_values(value: Any) -> Optional[List[float]]:
    """Plain list from a Firestore Vector or list field (None if neither)."""
    if value is None:
        return None
    if hasattr(value, 'to_map_value'):
        map_value = value.to_map_value()
        return [float(v) for v in map_value.get('value', map_value)]
    if isinstance(value, (list, tuple)):
        return [float(v) for v in value]
    return None


def _append_if_absent(transaction, item_ref, item_data, cluster_ref, cluster_update) -> bool:
    """Transaction body for ClusterStore.append_item."""
    if item_ref.get(transaction=transaction).exists:
        return False
    transaction.set(item_ref, item_data)
    transaction.update(cluster_ref, cluster_update)
    return True


@dataclass
class WriteResult:
    """What a rebuild write actually persisted."""

    written_clusters: int = 0
    written_items: int = 0
    failed_clusters: List[str] = field(default_factory=list)
    failed_items: List[str] = field(default_factory=list)


class ClusterStore:
    """
    Cluster store for one item kind.

    Args:
        config: Clustering config (collections, lock lease)
        db: Firestore client (created from project_id if None)
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
        retry_policy: Retry policy for batch commits
        dry_run: Log writes instead of performing them
        owner: Lock owner label (hostname:pid if None)
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        config: ClusteringConfig,
        db=None,
        project_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        dry_run: bool = False,
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.db = db if db is not None else firestore.Client(project=project_id or os.environ.get('GCP_PROJECT'))
        self.retry_policy = retry_policy or RetryPolicy()
        self.dry_run = dry_run
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"
        self.clock = clock
        self._renewed_at: Optional[datetime] = None

    @property
    def clusters(self):
        return self.db.collection(self.config.clusters_collection)

    @property
    def items(self):
        return self.db.collection(self.config.items_collection)

    def _commit(self, batch, description: str) -> None:
        self.retry_policy.call(batch.commit, description)

    # ==================== Writer lock ====================

    @contextmanager
    def writer_lock(self, mode: str) -> Iterator[None]:
        """
        Hold the single-writer lock for this item kind.

        Raises:
            WriterLockBusy: If another live writer holds the lock
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Skipping writer lock for {self.config.kind.value} ({mode})")
            yield
            return

        self.acquire_lock(mode)
        try:
            yield
        finally:
            self.release_lock()

    def _lock_ref(self):
        return self.db.collection(self.config.locks_collection).document(self.config.kind.value)

    def _lease_expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.config.lock_lease_seconds)

    def acquire_lock(self, mode: str) -> None:
        now = self.clock()
        lease = {
            'owner': self.owner,
            'mode': mode,
            'acquired_at': now,
            'expires_at': self._lease_expiry(now),
        }
        lock_ref = self._lock_ref()

        try:
            lock_ref.create(lease)
            self._renewed_at = now
            logger.info(f"Acquired {mode} lock for {self.config.kind.value}")
            return
        except AlreadyExists:
            pass

        snapshot = lock_ref.get()
        if not snapshot.exists:
            # Released between our create and read
            try:
                lock_ref.create(lease)
            except AlreadyExists:
                raise WriterLockBusy(self.config.kind.value, owner="another writer")
            self._renewed_at = now
            logger.info(f"Acquired {mode} lock for {self.config.kind.value}")
            return

        holder = snapshot.to_dict() or {}
        expires_at = holder.get('expires_at')

        if expires_at is not None and expires_at > now:
            raise WriterLockBusy(
                self.config.kind.value,
                owner=holder.get('owner', 'unknown'),
                mode=holder.get('mode', 'unknown'),
                since=holder.get('acquired_at'),
            )

        # Stale lease: take over only if nobody touched it since we read it
        logger.warning(
            f"Taking over stale {holder.get('mode', 'unknown')} lock held by "
            f"{holder.get('owner', 'unknown')} (expired {expires_at})"
        )
        try:
            lock_ref.update(lease, option=self.db.write_option(last_update_time=snapshot.update_time))
        except (FailedPrecondition, NotFound):
            raise WriterLockBusy(self.config.kind.value, owner="another writer", mode="takeover")
        self._renewed_at = now
        logger.info(f"Acquired {mode} lock for {self.config.kind.value}")

    def renew_lock(self, force: bool = False) -> None:
        """
        Push our lease expiry forward so a long run is not taken for a dead one.

        Calls within a quarter of the lease since the last renewal return
        without touching Firestore unless force is set.

        Raises:
            WriterLockLost: If the lock document no longer names us as owner
        """
        if self.dry_run:
            return

        now = self.clock()
        interval = timedelta(seconds=self.config.lock_lease_seconds / 4)
        if not force and self._renewed_at is not None and now - self._renewed_at < interval:
            return

        lock_ref = self._lock_ref()
        snapshot = lock_ref.get()
        holder = (snapshot.to_dict() or {}) if snapshot.exists else {}
        if holder.get('owner') != self.owner:
            logger.error(f"Writer lock for {self.config.kind.value} now held by {holder.get('owner', 'nobody')}")
            raise WriterLockLost(self.config.kind.value, owner=holder.get('owner', 'nobody'))

        try:
            lock_ref.update(
                {'expires_at': self._lease_expiry(now)},
                option=self.db.write_option(last_update_time=snapshot.update_time),
            )
        except (FailedPrecondition, NotFound):
            raise WriterLockLost(self.config.kind.value, owner="another writer")

        self._renewed_at = now
        logger.debug(f"Renewed {self.config.kind.value} lock until {self._lease_expiry(now)}")

    def release_lock(self) -> None:
        lock_ref = self._lock_ref()
        snapshot = lock_ref.get()
        if snapshot.exists and (snapshot.to_dict() or {}).get('owner') == self.owner:
            lock_ref.delete()
            self._renewed_at = None
            logger.info(f"Released lock for {self.config.kind.value}")
        else:
            logger.warning(f"Lock for {self.config.kind.value} no longer held by {self.owner}")

    # ==================== Full rebuild ====================

    def clear(self) -> int:
        """
        Delete every cluster and item document of this kind.

        Returns:
            Number of documents deleted

        Raises:
            StoreWriteError: If a delete batch still fails after retries
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would clear {self.config.clusters_collection} and {self.config.items_collection}")
            return 0

        deleted = 0
        for collection in (self.items, self.clusters):
            while True:
                docs = list(collection.limit(MAX_BATCH_OPERATIONS).stream())
                if not docs:
                    break

                batch = self.db.batch()
                for doc in docs:
                    batch.delete(doc.reference)
                try:
                    self._commit(batch, f"Delete batch of {len(docs)} documents")
                except Exception as e:
                    raise StoreWriteError(f"Failed to clear existing clusters: {e}") from e
                deleted += len(docs)

        logger.info(f"Cleared {deleted} existing documents")
        return deleted

    def _cluster_document(self, cluster: Cluster, items_by_id: Dict[str, Item]) -> Dict[str, Any]:
        representative = items_by_id.get(cluster.representative_item_id)
        return {
            'topic': cluster.topic_label,
            'centroid': Vector([float(v) for v in cluster.centroid]),
            'member_count': cluster.size,
            'representative_item_id': cluster.representative_item_id,
            'representative_text': representative.text if representative else None,
            'created_at': firestore.SERVER_TIMESTAMP,
            'updated_at': firestore.SERVER_TIMESTAMP,
        }

    def _item_document(self, item: Item, cluster_id: Optional[str], vector: Optional[Sequence[float]]) -> Dict[str, Any]:
        data = {
            'text': item.text,
            'cluster_id': cluster_id,
            'source_ref': dict(item.source_ref),
            'created_at': firestore.SERVER_TIMESTAMP,
        }
        if vector is not None:
            data['embedding'] = Vector([float(v) for v in vector])
        return data

    def write_clusters(
        self,
        clusters: Sequence[Cluster],
        items_by_id: Dict[str, Item],
        vectors_by_id: Dict[str, Sequence[float]],
    ) -> WriteResult:
        """
        Insert clusters and their member items, one cluster at a time.

        A cluster whose batch still fails after retries is skipped and
        reported; the remaining clusters are still written.
        """
        result = WriteResult()

        for index, cluster in enumerate(clusters, start=1):
            operations = [(self.clusters.document(cluster.id), self._cluster_document(cluster, items_by_id))]
            for item_id in cluster.member_item_ids:
                operations.append((
                    self.items.document(item_id),
                    self._item_document(items_by_id[item_id], cluster.id, vectors_by_id.get(item_id)),
                ))

            if self.dry_run:
                logger.info(
                    f"[DRY RUN] Would write cluster {cluster.id} '{cluster.topic_label}' "
                    f"with {cluster.size} items"
                )
                result.written_clusters += 1
                result.written_items += cluster.size
                continue

            try:
                for start in range(0, len(operations), MAX_BATCH_OPERATIONS):
                    batch = self.db.batch()
                    for doc_ref, data in operations[start:start + MAX_BATCH_OPERATIONS]:
                        batch.set(doc_ref, data)
                    self._commit(batch, f"Write cluster {index}/{len(clusters)}")
            except Exception as e:
                logger.error(f"Skipping cluster {cluster.id} ({cluster.size} items): {e}")
                result.failed_clusters.append(cluster.id)
                result.failed_items.extend(cluster.member_item_ids)
                continue

            result.written_clusters += 1
            result.written_items += cluster.size

        logger.info(
            f"Wrote {result.written_clusters} clusters / {result.written_items} items"
            + (f", {len(result.failed_clusters)} clusters failed" if result.failed_clusters else "")
        )
        return result

    def replace_all(
        self,
        clusters: Sequence[Cluster],
        items_by_id: Dict[str, Item],
        vectors_by_id: Dict[str, Sequence[float]],
    ) -> WriteResult:
        """Clear the kind's collections, then write the new partition."""
        self.clear()
        return self.write_clusters(clusters, items_by_id, vectors_by_id)

    # ==================== Incremental append ====================

    def has_item_text(self, text: str) -> bool:
        """True if an item with exactly this text is already stored."""
        snapshot = self.items.document(item_id_for(text)).get()
        if not snapshot.exists:
            return False
        return (snapshot.to_dict() or {}).get('text') == text

    def load_centroids(self) -> List[StoredCentroid]:
        """Read every stored cluster centroid of this kind."""
        centroids = []
        for doc in self.clusters.stream():
            data = doc.to_dict() or {}
            values = vector_values(data.get('centroid'))
            if not values:
                logger.warning(f"Cluster {doc.id} has no centroid, skipping")
                continue
            centroids.append(StoredCentroid(
                cluster_id=doc.id,
                centroid=np.asarray(values, dtype=np.float64),
                member_count=int(data.get('member_count', 0)),
                topic_label=data.get('topic'),
            ))

        logger.info(f"Loaded {len(centroids)} cluster centroids from {self.config.clusters_collection}")
        return centroids

    def append_item(
        self,
        item: Item,
        cluster_id: str,
        vector: Optional[Sequence[float]] = None,
        new_centroid: Optional[Sequence[float]] = None,
    ) -> bool:
        """
        Link a new item to an existing cluster and bump its member_count.

        Runs as a transaction that first checks the item document, so a retry
        after a commit that did land does not count the item twice.

        Returns:
            False if the item was already stored (nothing written)

        Raises:
            Exception: If the transaction still fails after retries
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add item {item.id} to cluster {cluster_id}")
            return True

        cluster_update: Dict[str, Any] = {
            'member_count': Increment(1),
            'updated_at': firestore.SERVER_TIMESTAMP,
        }
        if new_centroid is not None:
            cluster_update['centroid'] = Vector([float(v) for v in new_centroid])

        item_ref = self.items.document(item.id)
        cluster_ref = self.clusters.document(cluster_id)
        item_data = self._item_document(item, cluster_id, vector)
        append = firestore.transactional(_append_if_absent)

        appended = self.retry_policy.call(
            lambda: append(self.db.transaction(), item_ref, item_data, cluster_ref, cluster_update),
            f"Append item {item.id}",
        )
        if not appended:
            logger.info(f"Item {item.id} already stored, member_count left unchanged")
        return appended

    # ==================== FAQ view ====================

    def load_faq_entries(self, limit: Optional[int] = None) -> List[FAQEntry]:
        """
        Clusters ordered by member count, each with its representative and
        the other member texts.
        """
        query = self.clusters.order_by('member_count', direction=firestore.Query.DESCENDING)
        if limit:
            query = query.limit(limit)

        entries = []
        for doc in query.stream():
            data = doc.to_dict() or {}
            representative_id = data.get('representative_item_id')

            representative_text = data.get('representative_text')
            representative_source: Dict[str, Any] = {}
            similar = []
            for item_doc in self.items.where('cluster_id', '==', doc.id).stream():
                item = item_doc.to_dict() or {}
                if item_doc.id == representative_id:
                    representative_text = item.get('text', representative_text)
                    representative_source = item.get('source_ref') or {}
                    continue
                similar.append({
                    'item_id': item_doc.id,
                    'text': item.get('text'),
                    **(item.get('source_ref') or {}),
                })

            entries.append(FAQEntry(
                cluster_id=doc.id,
                topic=data.get('topic') or "",
                member_count=int(data.get('member_count', 0)),
                representative_text=representative_text,
                representative_source=representative_source,
                similar_items=similar,
            ))

        return entries
