"""
Semantic clustering of free-text questions and cancellation reasons.

Groups semantically equivalent texts extracted from community posts into
topic clusters for the FAQ view.

Two execution modes:
1. Full rebuild: re-embed (cached), re-cluster and replace every cluster
2. Incremental: attach texts from recent posts to the nearest stored cluster
"""

from .config import ClusteringConfig, ItemKind, get_config
from .density import DensityClusterer
from .engine import cluster_items
from .exceptions import ClusteringError, RebuildCancelled, StoreWriteError, WriterLockBusy, WriterLockLost
from .incremental import IncrementalAssigner, find_best_cluster
from .models import Cluster, ClusterParameters, FAQEntry, Item, StoredCentroid
from .parameter_search import ParameterSearch
from .rebuild import FullRebuild, RebuildReport
from .similarity import cosine_similarity, similarity_matrix

__all__ = [
    'Cluster',
    'ClusterParameters',
    'ClusteringConfig',
    'ClusteringError',
    'DensityClusterer',
    'FAQEntry',
    'FullRebuild',
    'IncrementalAssigner',
    'Item',
    'ItemKind',
    'ParameterSearch',
    'RebuildCancelled',
    'RebuildReport',
    'StoreWriteError',
    'StoredCentroid',
    'WriterLockBusy',
    'WriterLockLost',
    'cluster_items',
    'cosine_similarity',
    'find_best_cluster',
    'get_config',
    'similarity_matrix',
]
