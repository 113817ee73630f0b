"""
Clustering configuration per item kind.

Questions and cancellation reasons run through the same engine; they differ
only in the profile below. Defaults can be overridden from a YAML file and
from environment variables (environment wins).

YAML layout:
    questions:
      target_cluster_count: 30
      acceptance_threshold: 0.85
    cancellation_reasons:
      max_cluster_size: 25

Environment Variables:
    CLUSTER_TARGET_COUNT: Target number of clusters for parameter search
    CLUSTER_MAX_SIZE: Base maximum cluster size
    CLUSTER_ACCEPTANCE_THRESHOLD: Incremental assignment acceptance threshold
    CLUSTER_RUNNING_MEAN: "true" to update centroids on incremental insert
    CLUSTER_PRODUCT_NAME: Product the community discusses (used in label prompts)
    EMBEDDINGS_CACHE_DIR: Directory for the embedding cache files (default: tmp)
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import ClusterParameters

logger = logging.getLogger(__name__)


class ItemKind(str, Enum):
    """Kinds of free text the engine clusters."""
    QUESTIONS = "questions"
    CANCELLATION_REASONS = "cancellation_reasons"


@dataclass(frozen=True)
class ClusteringConfig:
    """Everything the pipeline needs to know about one item kind."""

    kind: ItemKind

    # Persistence
    clusters_collection: str
    items_collection: str
    locks_collection: str = "cluster_locks"
    lock_lease_seconds: int = 3600

    # Upstream records
    source_collection: str = "analysis_results"
    source_field: str = "user_questions"
    posts_collection: str = "reddit_posts"
    recent_limit: int = 20

    # Embeddings
    cache_filename: str = "embeddings-cache.json"
    embedding_batch_size: int = 100

    # Density clustering
    min_similarity: float = 0.95
    min_neighbor_count: int = 2
    max_cluster_size: int = 40
    large_cluster_size_threshold: int = 20
    large_cluster_similarity: float = 0.97
    noise_similarity_factor: float = 0.9
    similarity_warn_items: int = 5000

    # Parameter search
    target_cluster_count: int = 25
    similarity_options: Tuple[float, ...] = (0.97, 0.96, 0.95, 0.94, 0.93, 0.92)
    min_neighbor_options: Tuple[int, ...] = (3, 2, 4)
    max_size_factors: Tuple[float, ...] = (1.0, 0.75, 1.25)
    target_tolerance: float = 0.5
    early_stop_distance: int = 5
    early_stop_min_score: float = 10.0
    max_singleton_fraction: float = 0.3

    # Incremental assignment
    acceptance_threshold: float = 0.8
    running_mean_centroids: bool = False

    # Topic labeling
    item_noun: str = "questions"
    product_name: str = "WHOOP"
    label_sample_size: int = 10

    def base_parameters(self) -> ClusterParameters:
        """Parameters used when clustering without a search."""
        return ClusterParameters(
            min_similarity=self.min_similarity,
            min_neighbor_count=self.min_neighbor_count,
            max_cluster_size=self.max_cluster_size,
            large_cluster_size_threshold=self.large_cluster_size_threshold,
            large_cluster_similarity=self.large_cluster_similarity,
            noise_similarity_factor=self.noise_similarity_factor,
        )

    def max_size_options(self) -> List[int]:
        sizes: List[int] = []
        for factor in self.max_size_factors:
            size = max(1, int(round(self.max_cluster_size * factor)))
            if size not in sizes:
                sizes.append(size)
        return sizes

    def parameter_grid(self) -> List[ClusterParameters]:
        """Candidate combinations, in search order."""
        grid = []
        for similarity in self.similarity_options:
            for min_neighbors in self.min_neighbor_options:
                for max_size in self.max_size_options():
                    grid.append(ClusterParameters(
                        min_similarity=similarity,
                        min_neighbor_count=min_neighbors,
                        max_cluster_size=max_size,
                        large_cluster_size_threshold=self.large_cluster_size_threshold,
                        large_cluster_similarity=self.large_cluster_similarity,
                        noise_similarity_factor=self.noise_similarity_factor,
                    ))
        return grid

    def cache_path(self, cache_dir: Optional[Path] = None) -> Path:
        directory = cache_dir or Path(os.environ.get('EMBEDDINGS_CACHE_DIR', 'tmp'))
        return Path(directory) / self.cache_filename


DEFAULT_CONFIGS: Dict[ItemKind, ClusteringConfig] = {
    ItemKind.QUESTIONS: ClusteringConfig(
        kind=ItemKind.QUESTIONS,
        clusters_collection="question_clusters",
        items_collection="question_items",
        source_field="user_questions",
        cache_filename="embeddings-cache.json",
        target_cluster_count=25,
        max_cluster_size=40,
        item_noun="questions",
        label_sample_size=10,
    ),
    ItemKind.CANCELLATION_REASONS: ClusteringConfig(
        kind=ItemKind.CANCELLATION_REASONS,
        clusters_collection="cancellation_clusters",
        items_collection="cancellation_items",
        source_field="cancellation_reason",
        cache_filename="cancellation-embeddings-cache.json",
        target_cluster_count=10,
        max_cluster_size=20,
        item_noun="cancellation reasons",
        label_sample_size=5,
    ),
}

ENV_OVERRIDES: Dict[str, str] = {
    'target_cluster_count': 'CLUSTER_TARGET_COUNT',
    'max_cluster_size': 'CLUSTER_MAX_SIZE',
    'acceptance_threshold': 'CLUSTER_ACCEPTANCE_THRESHOLD',
    'running_mean_centroids': 'CLUSTER_RUNNING_MEAN',
    'product_name': 'CLUSTER_PRODUCT_NAME',
}


def _coerce(name: str, value: Any, current: Any) -> Any:
    """Convert a raw override to the type of the field's default."""
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, tuple):
        if isinstance(value, str):
            value = [v for v in value.split(',') if v.strip()]
        element_type = type(current[0]) if current else float
        return tuple(element_type(v) for v in value)
    if isinstance(current, str):
        return str(value)
    raise ValueError(f"Cannot override field '{name}'")


def apply_overrides(config: ClusteringConfig, overrides: Dict[str, Any]) -> ClusteringConfig:
    """
    Return a copy of `config` with overrides applied.

    Raises:
        ValueError: If an override names an unknown field or has a bad value
    """
    if not overrides:
        return config

    known = {f.name for f in dataclasses.fields(config)}
    changes = {}
    for name, value in overrides.items():
        if name not in known or name == 'kind':
            raise ValueError(f"Unknown clustering setting: {name}")
        try:
            changes[name] = _coerce(name, value, getattr(config, name))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for {name}: {value!r} ({e})") from e

    return dataclasses.replace(config, **changes)


def load_config_file(path: Path) -> Dict[str, Dict[str, Any]]:
    """Read per-kind overrides from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping of item kinds")
    return data


def get_config(
    kind: ItemKind,
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ClusteringConfig:
    """
    Build the effective configuration for an item kind.

    Precedence (lowest first): built-in defaults, YAML file, environment
    variables, explicit overrides.
    """
    kind = ItemKind(kind)
    config = DEFAULT_CONFIGS[kind]

    if config_path is not None:
        file_overrides = load_config_file(Path(config_path)).get(kind.value) or {}
        config = apply_overrides(config, file_overrides)

    env_overrides = {
        name: os.environ[env_name]
        for name, env_name in ENV_OVERRIDES.items()
        if os.environ.get(env_name)
    }
    if env_overrides:
        logger.info(f"Applying environment overrides: {sorted(env_overrides)}")
        config = apply_overrides(config, env_overrides)

    return apply_overrides(config, overrides or {})
