"""
Grid search over density clustering parameters.

Each combination is run on the same similarity matrix and scored by its size
distribution: medium clusters (2-10 members) are what an FAQ wants, large
clusters are fine, singletons are penalized. Among combinations whose cluster
count lands near the target, the best-scoring one wins, leaning towards the
one closer to the target when scores are comparable.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .density import DensityClusterer, cluster_sizes
from .models import ClusterParameters

logger = logging.getLogger(__name__)

MEDIUM_CLUSTER_MAX = 10

MEDIUM_WEIGHT = 3.0
LARGE_WEIGHT = 2.0
SINGLETON_PENALTY = 0.5

# Replacement rule between two acceptable results
SCORE_DISTANCE_SLACK = 1.5
CLOSER_DISTANCE_RATIO = 0.7
CLOSER_MIN_SCORE_RATIO = 0.7


def score_cluster_sizes(sizes: Sequence[int]) -> Dict[str, float]:
    """
    Bucket cluster sizes and compute the distribution score.

    Returns:
        Dict with singletons, medium, large, cluster_count and score
    """
    singletons = sum(1 for s in sizes if s == 1)
    medium = sum(1 for s in sizes if 2 <= s <= MEDIUM_CLUSTER_MAX)
    large = sum(1 for s in sizes if s > MEDIUM_CLUSTER_MAX)

    return {
        'cluster_count': len(sizes),
        'singletons': singletons,
        'medium': medium,
        'large': large,
        'score': medium * MEDIUM_WEIGHT + large * LARGE_WEIGHT - singletons * SINGLETON_PENALTY,
    }


@dataclass
class TrialResult:
    """Outcome of clustering with one parameter combination."""

    params: ClusterParameters
    labels: np.ndarray = field(repr=False)
    cluster_count: int
    singletons: int
    medium: int
    large: int
    score: float
    distance: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            **self.params.as_dict(),
            'cluster_count': self.cluster_count,
            'singletons': self.singletons,
            'medium': self.medium,
            'large': self.large,
            'score': self.score,
            'distance': self.distance,
        }


@dataclass
class SearchResult:
    """Chosen trial plus every trial evaluated on the way."""

    best: TrialResult
    trials: List[TrialResult]
    within_tolerance: bool
    stopped_early: bool = False

    @property
    def labels(self) -> np.ndarray:
        return self.best.labels

    @property
    def params(self) -> ClusterParameters:
        return self.best.params


class ParameterSearch:
    """
    Find density clustering parameters that give a useful FAQ partition.

    Args:
        grid: Parameter combinations, tried in order
        target_cluster_count: Desired number of clusters
        target_tolerance: Acceptable distance from target, as a fraction of it
        early_stop_distance: Stop once a result is this close to target...
        early_stop_min_score: ...scores at least this...
        max_singleton_fraction: ...and has fewer singletons than this share of clusters
    """

    def __init__(
        self,
        grid: Sequence[ClusterParameters],
        target_cluster_count: int,
        target_tolerance: float = 0.5,
        early_stop_distance: int = 5,
        early_stop_min_score: float = 10.0,
        max_singleton_fraction: float = 0.3,
    ):
        if not grid:
            raise ValueError("Parameter grid must not be empty")
        if target_cluster_count < 1:
            raise ValueError(f"target_cluster_count must be >= 1, got {target_cluster_count}")

        self.grid = list(grid)
        self.target_cluster_count = target_cluster_count
        self.target_tolerance = target_tolerance
        self.early_stop_distance = early_stop_distance
        self.early_stop_min_score = early_stop_min_score
        self.max_singleton_fraction = max_singleton_fraction

    @property
    def acceptable_distance(self) -> float:
        return self.target_tolerance * self.target_cluster_count

    def evaluate(self, similarity: np.ndarray, params: ClusterParameters) -> TrialResult:
        labels = DensityClusterer(params).fit_predict(similarity)
        stats = score_cluster_sizes(list(cluster_sizes(labels).values()))
        count = int(stats['cluster_count'])

        return TrialResult(
            params=params,
            labels=labels,
            cluster_count=count,
            singletons=int(stats['singletons']),
            medium=int(stats['medium']),
            large=int(stats['large']),
            score=stats['score'],
            distance=abs(count - self.target_cluster_count),
        )

    @staticmethod
    def _replaces(candidate: TrialResult, incumbent: Optional[TrialResult]) -> bool:
        if incumbent is None:
            return True
        if (candidate.score > incumbent.score
                and candidate.distance <= incumbent.distance * SCORE_DISTANCE_SLACK):
            return True
        return (candidate.distance < incumbent.distance * CLOSER_DISTANCE_RATIO
                and candidate.score >= incumbent.score * CLOSER_MIN_SCORE_RATIO)

    def _good_enough(self, trial: TrialResult) -> bool:
        return (
            trial.distance <= self.early_stop_distance
            and trial.score >= self.early_stop_min_score
            and trial.singletons < trial.cluster_count * self.max_singleton_fraction
        )

    def search(self, similarity: np.ndarray) -> SearchResult:
        """
        Try the grid on a similarity matrix.

        Args:
            similarity: Symmetric (n, n) similarity matrix

        Returns:
            SearchResult with the chosen labels and all trials
        """
        logger.info(
            f"Searching {len(self.grid)} parameter combinations "
            f"(target {self.target_cluster_count} clusters, "
            f"tolerance ±{self.acceptable_distance:g})"
        )

        trials: List[TrialResult] = []
        best: Optional[TrialResult] = None
        stopped_early = False

        for params in self.grid:
            trial = self.evaluate(similarity, params)
            trials.append(trial)

            logger.info(
                f"  similarity={params.min_similarity}, min_neighbors={params.min_neighbor_count}, "
                f"max_size={params.max_cluster_size}: {trial.cluster_count} clusters, "
                f"score={trial.score:g} (singletons={trial.singletons}, "
                f"medium={trial.medium}, large={trial.large})"
            )

            if trial.distance > self.acceptable_distance:
                continue

            if self._replaces(trial, best):
                best = trial
                logger.info("  New best parameters found")

                if self._good_enough(trial):
                    logger.info("Found good parameters, stopping search")
                    stopped_early = True
                    break

        if best is not None:
            return SearchResult(best=best, trials=trials, within_tolerance=True, stopped_early=stopped_early)

        # Nothing near the target: highest score, then closest, then earliest
        fallback = min(
            enumerate(trials),
            key=lambda pair: (-pair[1].score, pair[1].distance, pair[0]),
        )[1]
        logger.warning(
            f"No combination within ±{self.acceptable_distance:g} of target "
            f"{self.target_cluster_count}; falling back to best score "
            f"({fallback.cluster_count} clusters, score={fallback.score:g})"
        )
        return SearchResult(best=fallback, trials=trials, within_tolerance=False)
