"""
Upstream records: texts extracted from analyzed posts.

Per-post analysis lives in the `analysis_results` collection:
    content_id: id of the post in `reddit_posts`
    content_type: "post" or "comment"
    user_questions: list of questions the post asks
    cancellation_reason: why the author cancelled (with cancellation_mention=True)
    inserted_at: analysis timestamp

Post title/url are joined from `reddit_posts/{content_id}`.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Protocol

from google.cloud import firestore

from .config import ClusteringConfig, ItemKind
from .normalizer import RawRecord

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Pull-only access to upstream texts for one item kind."""

    def fetch_records(self) -> List[RawRecord]:
        ...

    def fetch_recent(self, limit: int) -> List[RawRecord]:
        ...


class FirestoreRecordSource:
    """
    Read questions or cancellation reasons from analysis results.

    Args:
        config: Clustering config (item kind, collection and field names)
        db: Firestore client (created from project_id if None)
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
    """

    def __init__(self, config: ClusteringConfig, db=None, project_id: Optional[str] = None):
        self.config = config
        self.db = db if db is not None else firestore.Client(project=project_id or os.environ.get('GCP_PROJECT'))
        self._posts: Dict[str, Dict[str, Any]] = {}

    def _base_query(self):
        query = self.db.collection(self.config.source_collection)
        if self.config.kind == ItemKind.QUESTIONS:
            return query.where('content_type', '==', 'post')
        return query.where('cancellation_mention', '==', True)

    def fetch_records(self) -> List[RawRecord]:
        """Every text of this kind, oldest analysis first."""
        docs = self._base_query().order_by('inserted_at').stream()
        records = self._to_records(docs)
        logger.info(f"Fetched {len(records)} {self.config.item_noun} from {self.config.source_collection}")
        return records

    def fetch_recent(self, limit: int) -> List[RawRecord]:
        """Texts from the `limit` most recently analyzed posts."""
        docs = (
            self._base_query()
            .order_by('inserted_at', direction=firestore.Query.DESCENDING)
            .limit(limit)
            .stream()
        )
        records = self._to_records(docs)
        logger.info(f"Fetched {len(records)} {self.config.item_noun} from the {limit} most recent analyses")
        return records

    def _texts(self, data: Dict[str, Any]) -> List[str]:
        value = data.get(self.config.source_field)
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str)]
        return []

    def _post(self, post_id: Optional[str]) -> Dict[str, Any]:
        if not post_id:
            return {}
        if post_id not in self._posts:
            snapshot = self.db.collection(self.config.posts_collection).document(post_id).get()
            self._posts[post_id] = (snapshot.to_dict() or {}) if snapshot.exists else {}
        return self._posts[post_id]

    def _to_records(self, docs: Iterable) -> List[RawRecord]:
        records = []
        for doc in docs:
            data = doc.to_dict() or {}
            texts = self._texts(data)
            if not texts:
                continue

            post_id = data.get('content_id')
            post = self._post(post_id)
            source_ref = {
                'record_id': doc.id,
                'post_id': post_id,
                'post_title': post.get('title', ''),
                'post_url': post.get('url', ''),
            }
            records.extend(RawRecord(text=text, source_ref=dict(source_ref)) for text in texts)

        return records
