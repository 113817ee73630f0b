"""
Unit tests for the Firestore cluster store.

Tests cover:
- Per-cluster batch writes, 500-operation batches, failed clusters reported
- Clearing collections before a rebuild
- Writer lock acquisition, contention, stale takeover and lease renewal
- Incremental append in a transaction, safe to retry
- Centroid and FAQ reads
- Dry-run mode
"""

import os
import sys
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock, patch

import numpy as np
from google.api_core.exceptions import AlreadyExists, DeadlineExceeded, FailedPrecondition, ServiceUnavailable
from google.cloud.firestore_v1 import Increment
from google.cloud.firestore_v1.document import DocumentReference
from google.cloud.firestore_v1.vector import Vector

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from clustering.config import ItemKind, get_config
from clustering.exceptions import StoreWriteError, WriterLockBusy, WriterLockLost
from clustering.models import Cluster, Item
from clustering.normalizer import item_id_for
from clustering.store import ClusterStore, vector_values
from common.retry import RetryPolicy

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def make_item(text, **source_ref):
    return Item(id=item_id_for(text), text=text, source_ref=source_ref)


def make_doc(doc_id, data):
    doc = Mock()
    doc.id = doc_id
    doc.exists = True
    doc.to_dict.return_value = data
    return doc


class LockDocument(DocumentReference):
    """
    A real Firestore DocumentReference whose reads are canned.

    Writes go through the SDK's own method signatures down to the client's
    batch, so a keyword the SDK does not accept fails here as in production.
    """

    def __init__(self, client, holder, exists_already=True):
        super().__init__("cluster_locks", "questions", client=client)
        self.holder = holder
        self.exists_already = exists_already
        self.read_time = NOW - timedelta(hours=2)

    def create(self, document_data, retry=None, timeout=None):
        if self.exists_already:
            raise AlreadyExists("Document already exists")
        return MagicMock()

    def get(self, field_paths=None, transaction=None, retry=None, timeout=None):
        snapshot = make_doc(self.id, self.holder)
        snapshot.update_time = self.read_time
        return snapshot


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self.config = get_config(ItemKind.QUESTIONS)
        self.collections = {}
        self.db = MagicMock()
        self.db.collection.side_effect = lambda name: self.collections.setdefault(name, MagicMock(name=name))
        self.batch = self.db.batch.return_value
        self.store = ClusterStore(
            self.config,
            db=self.db,
            retry_policy=RetryPolicy(max_attempts=2, sleep=Mock()),
            owner="test-host:1",
            clock=lambda: NOW,
        )

    def collection(self, name):
        return self.db.collection(name)

    def make_cluster(self, cluster_id, texts):
        items = [make_item(t) for t in texts]
        cluster = Cluster(
            id=cluster_id,
            label=0,
            member_item_ids=[item.id for item in items],
            centroid=np.array([0.5, 0.5]),
            representative_item_id=items[0].id,
            topic_label="Battery life",
        )
        return cluster, {item.id: item for item in items}, {item.id: [0.5, 0.5] for item in items}


class TestWriteClusters(StoreTestCase):

    def test_cluster_and_items_in_one_batch(self):
        cluster, items, vectors = self.make_cluster("c1", ["Battery life?", "How long does the battery last?"])

        result = self.store.write_clusters([cluster], items, vectors)

        self.assertEqual(result.written_clusters, 1)
        self.assertEqual(result.written_items, 2)
        self.assertEqual(self.batch.set.call_count, 3)
        self.batch.commit.assert_called_once()

        cluster_data = self.batch.set.call_args_list[0].args[1]
        self.assertEqual(cluster_data['topic'], "Battery life")
        self.assertEqual(cluster_data['member_count'], 2)
        self.assertEqual(cluster_data['representative_text'], "Battery life?")
        self.assertIsInstance(cluster_data['centroid'], Vector)

        item_data = self.batch.set.call_args_list[1].args[1]
        self.assertEqual(item_data['cluster_id'], "c1")
        self.assertEqual(item_data['text'], "Battery life?")

    def test_large_cluster_split_into_batches_of_500(self):
        cluster, items, vectors = self.make_cluster("c1", [f"question {i}" for i in range(600)])

        self.store.write_clusters([cluster], items, vectors)

        self.assertEqual(self.batch.commit.call_count, 2)
        self.assertEqual(self.batch.set.call_count, 601)

    def test_failed_cluster_skipped_and_reported(self):
        first, first_items, first_vectors = self.make_cluster("c1", ["a", "b"])
        second, second_items, second_vectors = self.make_cluster("c2", ["c"])
        self.batch.commit.side_effect = [ServiceUnavailable("503"), ServiceUnavailable("503"), None]

        result = self.store.write_clusters(
            [first, second],
            {**first_items, **second_items},
            {**first_vectors, **second_vectors},
        )

        self.assertEqual(result.failed_clusters, ["c1"])
        self.assertEqual(result.failed_items, first.member_item_ids)
        self.assertEqual(result.written_clusters, 1)
        self.assertEqual(result.written_items, 1)

    def test_dry_run_writes_nothing(self):
        self.store.dry_run = True
        cluster, items, vectors = self.make_cluster("c1", ["a"])

        result = self.store.write_clusters([cluster], items, vectors)

        self.assertEqual(result.written_clusters, 1)
        self.db.batch.assert_not_called()


class TestClear(StoreTestCase):

    def test_deletes_items_and_clusters(self):
        items = self.collection("question_items")
        clusters = self.collection("question_clusters")
        items.limit.return_value.stream.side_effect = [[Mock(), Mock()], []]
        clusters.limit.return_value.stream.side_effect = [[Mock()], []]

        deleted = self.store.clear()

        self.assertEqual(deleted, 3)
        self.assertEqual(self.batch.delete.call_count, 3)
        items.limit.assert_called_with(500)

    def test_failed_delete_raises(self):
        items = self.collection("question_items")
        items.limit.return_value.stream.side_effect = [[Mock()], []]
        self.batch.commit.side_effect = ServiceUnavailable("503")

        with self.assertRaises(StoreWriteError):
            self.store.clear()


class TestWriterLock(StoreTestCase):

    def lock_ref(self):
        return self.collection("cluster_locks").document.return_value

    def test_acquire_and_release(self):
        lock_ref = self.lock_ref()
        lock_ref.get.return_value = make_doc("questions", {'owner': "test-host:1"})

        with self.store.writer_lock('rebuild'):
            lease = lock_ref.create.call_args.args[0]
            self.assertEqual(lease['mode'], 'rebuild')
            self.assertEqual(lease['expires_at'], NOW + timedelta(seconds=3600))

        self.collection("cluster_locks").document.assert_called_with("questions")
        lock_ref.delete.assert_called_once()

    def test_busy_lock_raises(self):
        lock_ref = self.lock_ref()
        lock_ref.create.side_effect = AlreadyExists("exists")
        lock_ref.get.return_value = make_doc("questions", {
            'owner': "other-host:9",
            'mode': 'rebuild',
            'acquired_at': NOW - timedelta(minutes=5),
            'expires_at': NOW + timedelta(minutes=55),
        })

        with self.assertRaises(WriterLockBusy) as context:
            with self.store.writer_lock('incremental'):
                self.fail("lock should not be granted")

        self.assertEqual(context.exception.owner, "other-host:9")
        self.assertEqual(context.exception.mode, "rebuild")
        lock_ref.delete.assert_not_called()

    def use_lock_document(self, holder):
        client = MagicMock()
        lock_doc = LockDocument(client, holder)
        self.collection("cluster_locks").document.return_value = lock_doc
        return lock_doc, client.batch.return_value

    def test_stale_lock_taken_over(self):
        lock_doc, batch = self.use_lock_document({
            'owner': "crashed-host:3",
            'mode': 'rebuild',
            'expires_at': NOW - timedelta(seconds=1),
        })

        self.store.acquire_lock('incremental')

        self.db.write_option.assert_called_once_with(last_update_time=lock_doc.read_time)
        batch.update.assert_called_once()
        update = batch.update.call_args
        self.assertIs(update.args[0], lock_doc)
        self.assertEqual(update.args[1]['owner'], "test-host:1")
        self.assertEqual(update.args[1]['mode'], 'incremental')
        self.assertEqual(update.args[1]['expires_at'], NOW + timedelta(seconds=3600))
        self.assertIs(update.kwargs['option'], self.db.write_option.return_value)
        batch.commit.assert_called_once()

    def test_stale_takeover_lost_to_another_writer(self):
        _, batch = self.use_lock_document({
            'owner': "crashed-host:3",
            'mode': 'rebuild',
            'expires_at': NOW - timedelta(seconds=1),
        })
        batch.commit.side_effect = FailedPrecondition("update_time does not match")

        with self.assertRaises(WriterLockBusy) as context:
            self.store.acquire_lock('incremental')

        self.assertEqual(context.exception.mode, "takeover")

    def test_renew_extends_lease(self):
        lock_doc, batch = self.use_lock_document({
            'owner': "test-host:1",
            'mode': 'rebuild',
            'expires_at': NOW + timedelta(minutes=10),
        })
        self.store.clock = lambda: NOW + timedelta(minutes=50)

        self.store.renew_lock()

        update = batch.update.call_args
        self.assertIs(update.args[0], lock_doc)
        self.assertEqual(update.args[1], {'expires_at': NOW + timedelta(minutes=50, seconds=3600)})
        self.db.write_option.assert_called_once_with(last_update_time=lock_doc.read_time)

    def test_renew_after_takeover_raises(self):
        _, batch = self.use_lock_document({
            'owner': "other-host:9",
            'mode': 'incremental',
            'expires_at': NOW + timedelta(minutes=60),
        })

        with self.assertRaises(WriterLockLost) as context:
            self.store.renew_lock(force=True)

        self.assertEqual(context.exception.owner, "other-host:9")
        batch.update.assert_not_called()

    def test_renew_skipped_shortly_after_acquire(self):
        lock_ref = self.lock_ref()

        self.store.acquire_lock('rebuild')
        self.store.clock = lambda: NOW + timedelta(minutes=5)
        self.store.renew_lock()

        lock_ref.get.assert_not_called()
        lock_ref.update.assert_not_called()

        lock_ref.get.return_value = make_doc("questions", {'owner': "test-host:1"})
        self.store.renew_lock(force=True)

        lock_ref.update.assert_called_once()

    def test_renew_in_dry_run_does_nothing(self):
        self.store.dry_run = True

        self.store.renew_lock(force=True)

        self.lock_ref().get.assert_not_called()

    def test_dry_run_skips_lock(self):
        self.store.dry_run = True

        with self.store.writer_lock('rebuild'):
            pass

        self.lock_ref().create.assert_not_called()


class TestIncrementalAppend(StoreTestCase):

    def setUp(self):
        super().setUp()
        # Run the transaction body directly against the mocked transaction
        patcher = patch('clustering.store.firestore.transactional', new=lambda fn: fn)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.transaction = self.db.transaction.return_value
        self.item_ref = self.collection("question_items").document.return_value
        self.item_ref.get.return_value = Mock(exists=False)

    def test_append_item_increments_count(self):
        item = make_item("Does it track naps?", post_id="p1")

        self.assertTrue(self.store.append_item(item, "c1", [0.1, 0.2]))

        self.item_ref.get.assert_called_once_with(transaction=self.transaction)
        self.transaction.set.assert_called_once()
        self.assertEqual(self.transaction.set.call_args.args[1]['cluster_id'], "c1")
        update = self.transaction.update.call_args.args[1]
        self.assertIsInstance(update['member_count'], Increment)
        self.assertNotIn('centroid', update)

    def test_append_with_running_mean_centroid(self):
        item = make_item("Does it track naps?")

        self.store.append_item(item, "c1", [0.1, 0.2], new_centroid=[0.3, 0.4])

        update = self.transaction.update.call_args.args[1]
        self.assertIsInstance(update['centroid'], Vector)

    def test_append_of_stored_item_writes_nothing(self):
        self.item_ref.get.return_value = Mock(exists=True)

        self.assertFalse(self.store.append_item(make_item("Does it track naps?"), "c1"))

        self.transaction.set.assert_not_called()
        self.transaction.update.assert_not_called()

    def test_retry_after_landed_commit_counts_once(self):
        # First attempt times out although the write went through
        self.item_ref.get.side_effect = [Mock(exists=False), Mock(exists=True)]
        self.transaction.update.side_effect = [DeadlineExceeded("Deadline Exceeded"), None]

        appended = self.store.append_item(make_item("Does it track naps?"), "c1", [0.1, 0.2])

        self.assertFalse(appended)
        self.assertEqual(self.db.transaction.call_count, 2)
        self.assertEqual(self.transaction.set.call_count, 1)
        self.assertEqual(self.transaction.update.call_count, 1)

    def test_append_in_dry_run_writes_nothing(self):
        self.store.dry_run = True

        self.assertTrue(self.store.append_item(make_item("Does it track naps?"), "c1"))

        self.db.transaction.assert_not_called()

    def test_has_item_text(self):
        items = self.collection("question_items")
        items.document.return_value.get.return_value = make_doc("x", {'text': "Battery life?"})

        self.assertTrue(self.store.has_item_text("Battery life?"))
        items.document.assert_called_with(item_id_for("Battery life?"))

    def test_has_item_text_missing(self):
        items = self.collection("question_items")
        items.document.return_value.get.return_value = Mock(exists=False)

        self.assertFalse(self.store.has_item_text("Battery life?"))


class TestReads(StoreTestCase):

    def test_load_centroids(self):
        clusters = self.collection("question_clusters")
        clusters.stream.return_value = [
            make_doc("c1", {'centroid': Vector([1.0, 0.0]), 'member_count': 3, 'topic': "Battery"}),
            make_doc("c2", {'centroid': [0.0, 1.0], 'member_count': 1}),
            make_doc("c3", {'member_count': 1}),
        ]

        centroids = self.store.load_centroids()

        self.assertEqual([c.cluster_id for c in centroids], ["c1", "c2"])
        np.testing.assert_allclose(centroids[0].centroid, [1.0, 0.0])
        self.assertEqual(centroids[0].member_count, 3)
        self.assertEqual(centroids[0].topic_label, "Battery")

    def test_vector_values(self):
        self.assertEqual(vector_values(Vector([1.0, 2.0])), [1.0, 2.0])
        self.assertEqual(vector_values([1, 2]), [1.0, 2.0])
        self.assertIsNone(vector_values("nope"))

    def test_load_faq_entries(self):
        clusters = self.collection("question_clusters")
        items = self.collection("question_items")
        clusters.order_by.return_value.limit.return_value.stream.return_value = [
            make_doc("c1", {'topic': "Battery life", 'member_count': 2, 'representative_item_id': "i1"}),
        ]
        items.where.return_value.stream.return_value = [
            make_doc("i1", {'text': "Battery life?", 'source_ref': {'post_id': "p1"}}),
            make_doc("i2", {'text': "How long does it last?", 'source_ref': {'post_id': "p2", 'post_url': "u"}}),
        ]

        entries = self.store.load_faq_entries(limit=5)

        clusters.order_by.return_value.limit.assert_called_once_with(5)
        items.where.assert_called_once_with('cluster_id', '==', "c1")
        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual(entry.topic, "Battery life")
        self.assertEqual(entry.representative_text, "Battery life?")
        self.assertEqual(entry.representative_source, {'post_id': "p1"})
        self.assertEqual(entry.similar_items, [
            {'item_id': "i2", 'text': "How long does it last?", 'post_id': "p2", 'post_url': "u"},
        ])


if __name__ == '__main__':
    unittest.main()
