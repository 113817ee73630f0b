"""
Command line interface for the clustering pipeline.

Environment Variables:
    GCP_PROJECT: GCP project ID (required)
    GCP_REGION: GCP region for Vertex AI (default: europe-west4)
    LLM_MODEL / LLM_PROVIDER: Topic labeling model (see llm package)
    CLUSTER_*: Clustering overrides (see clustering.config)
"""

import argparse
import dataclasses
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from google.cloud import firestore

from embed import EMBEDDING_DIMENSIONS, CachedEmbedder, EmbeddingCache, VertexEmbeddingProvider

from .config import ClusteringConfig, ItemKind, get_config
from .exceptions import ClusteringError, WriterLockBusy
from .incremental import IncrementalAssigner
from .rebuild import FullRebuild
from .sources import FirestoreRecordSource
from .store import ClusterStore
from .topic_labeler import TopicLabeler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='clustering',
        description='Semantic clustering of community questions and cancellation reasons'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--kind',
        choices=[kind.value for kind in ItemKind],
        default=ItemKind.QUESTIONS.value,
        help='Which texts to cluster (default: questions)'
    )
    common.add_argument('--config', help='YAML file with per-kind clustering overrides')

    subparsers = parser.add_subparsers(dest='command', required=True)

    rebuild = subparsers.add_parser('rebuild', parents=[common], help='Recompute all clusters')
    rebuild.add_argument('--dry-run', action='store_true', help='Run without writing to Firestore')
    rebuild.add_argument('--offline', action='store_true', help='Only use cached embeddings')
    rebuild.add_argument('--no-search', action='store_true', help='Skip the parameter search')
    rebuild.add_argument('--target-clusters', type=int, help='Target number of clusters')
    rebuild.add_argument('--max-cluster-size', type=int, help='Base maximum cluster size')

    assign = subparsers.add_parser('assign', parents=[common], help='Add texts from recent posts')
    assign.add_argument('--dry-run', action='store_true', help='Run without writing to Firestore')
    assign.add_argument('--offline', action='store_true', help='Only use cached embeddings')
    assign.add_argument('--limit', type=int, help='Number of recent posts (default: 20)')
    assign.add_argument('--acceptance-threshold', type=float, help='Minimum similarity to a centroid')

    faqs = subparsers.add_parser('faqs', parents=[common], help='Print the FAQ view as JSON')
    faqs.add_argument('--limit', type=int, help='Maximum number of clusters')

    return parser


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    flags = {
        'target_cluster_count': getattr(args, 'target_clusters', None),
        'max_cluster_size': getattr(args, 'max_cluster_size', None),
        'acceptance_threshold': getattr(args, 'acceptance_threshold', None),
    }
    return {name: value for name, value in flags.items() if value is not None}


def build_embedder(config: ClusteringConfig, offline: bool, region: str) -> CachedEmbedder:
    cache = EmbeddingCache(config.cache_path())
    cache.load()
    provider = None if offline else VertexEmbeddingProvider(region=region)
    return CachedEmbedder(
        provider,
        cache,
        batch_size=config.embedding_batch_size,
        offline=offline,
        expected_dimensions=EMBEDDING_DIMENSIONS,
    )


def run_command(args: argparse.Namespace, db, region: str) -> Optional[List[Dict[str, Any]]]:
    config = get_config(ItemKind(args.kind), args.config, config_overrides(args))
    dry_run = getattr(args, 'dry_run', False)
    store = ClusterStore(config, db=db, dry_run=dry_run)

    if args.command == 'faqs':
        return [dataclasses.asdict(entry) for entry in store.load_faq_entries(args.limit)]

    source = FirestoreRecordSource(config, db=db)
    embedder = build_embedder(config, args.offline, region)

    if args.command == 'rebuild':
        FullRebuild(
            config,
            source=source,
            embedder=embedder,
            labeler=TopicLabeler(config),
            store=store,
            search=not args.no_search,
        ).run()
    elif args.command == 'assign':
        IncrementalAssigner(config, store, embedder, source=source).run(args.limit)

    return None


def main(argv: Optional[List[str]] = None):
    """Main entry point for the clustering CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    project_id = os.getenv('GCP_PROJECT')
    region = os.getenv('GCP_REGION', 'europe-west4')

    if not project_id:
        logger.error("GCP_PROJECT environment variable not set")
        sys.exit(1)

    if not os.getenv('GOOGLE_APPLICATION_CREDENTIALS'):
        logger.warning("GOOGLE_APPLICATION_CREDENTIALS not set, using default credentials")

    try:
        output = run_command(args, firestore.Client(project=project_id), region)
    except WriterLockBusy as e:
        logger.error(str(e))
        sys.exit(1)
    except (ClusteringError, ValueError) as e:
        logger.error(f"Clustering failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Clustering failed: {e}", exc_info=True)
        sys.exit(1)

    if output is not None:
        print(json.dumps(output, indent=2, default=str))


if __name__ == '__main__':
    main()
