"""
Unit tests for the density clustering engine.

Tests cover:
- Near-duplicate questions grouped, unrelated one isolated
- Total partition and cluster size bound
- Noise attachment vs. singleton creation
- Stricter threshold for large clusters
- Determinism and input validation
"""

import os
import sys
import unittest

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from clustering.density import DensityClusterer, cluster_sizes
from clustering.models import ClusterParameters
from clustering.similarity import similarity_matrix


def make_groups(sizes, dim=64, noise=0.05, seed=42):
    """Synthetic embeddings: one tight group around each basis vector."""
    rng = np.random.RandomState(seed)
    vectors = []
    for group, size in enumerate(sizes):
        center = np.zeros(dim)
        center[group] = 1.0
        vectors.extend(center + rng.randn(size, dim) * noise)
    return np.array(vectors)


class TestDensityClusterer(unittest.TestCase):
    """Test DensityClusterer."""

    def test_battery_questions_cluster_together(self):
        """Three near-duplicate battery questions and one unrelated question."""
        vectors = [
            [1.0, 0.05, 0.0],   # How long is battery life?
            [1.0, 0.0, 0.05],   # What's the battery life like?
            [1.0, 0.03, 0.03],  # Battery life?
            [0.0, 1.0, 0.0],    # Can I cancel anytime?
        ]
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=40)

        labels = DensityClusterer(params).fit_predict(similarity_matrix(vectors))

        self.assertEqual(labels[0], labels[1])
        self.assertEqual(labels[1], labels[2])
        self.assertNotEqual(labels[3], labels[0])
        self.assertEqual(cluster_sizes(labels)[labels[3]], 1)

    def test_total_partition(self):
        embeddings = make_groups([6, 5, 4])
        np.random.seed(0)
        outliers = np.random.randn(3, 64)
        embeddings = np.vstack([embeddings, outliers])
        params = ClusterParameters(min_similarity=0.8, min_neighbor_count=2, max_cluster_size=40)

        labels = DensityClusterer(params).fit_predict(similarity_matrix(embeddings))

        self.assertEqual(len(labels), len(embeddings))
        self.assertTrue(all(label >= 0 for label in labels))

    def test_labels_numbered_from_zero(self):
        embeddings = make_groups([5, 5, 5])
        params = ClusterParameters(min_similarity=0.8, min_neighbor_count=2, max_cluster_size=40)

        labels = DensityClusterer(params).fit_predict(similarity_matrix(embeddings))

        self.assertEqual(sorted(set(labels)), list(range(len(set(labels)))))
        self.assertEqual(len(set(labels)), 3)

    def test_size_bound(self):
        embeddings = make_groups([25], noise=0.01)
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=10)

        clusterer = DensityClusterer(params)
        labels = clusterer.fit_predict(similarity_matrix(embeddings))

        sizes = cluster_sizes(labels)
        self.assertLessEqual(max(sizes.values()), 10)
        self.assertEqual(sum(sizes.values()), 25)
        self.assertEqual(clusterer.n_clusters_found, len(sizes))

    def test_noise_attached_to_most_similar_item(self):
        # Item 3 is too far for the 0.95 neighborhood but within 0.9 * 0.95
        vectors = [
            [1.0, 0.0],
            [1.0, 0.02],
            [1.0, -0.02],
            [1.0, 0.45],
        ]
        sim = similarity_matrix(vectors)
        self.assertLess(sim[3, 1], 0.95)
        self.assertGreater(sim[3, 1], 0.855)
        params = ClusterParameters(min_similarity=0.95, min_neighbor_count=2, max_cluster_size=40)

        clusterer = DensityClusterer(params)
        labels = clusterer.fit_predict(sim)

        self.assertEqual(len(set(labels)), 1)
        self.assertEqual(clusterer.n_singletons, 0)

    def test_unrelated_noise_becomes_singletons(self):
        vectors = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=40)

        clusterer = DensityClusterer(params)
        labels = clusterer.fit_predict(similarity_matrix(vectors))

        self.assertEqual(list(labels), [0, 1, 2])
        self.assertEqual(clusterer.n_dense_clusters, 0)
        self.assertEqual(clusterer.n_singletons, 3)

    def test_min_neighbor_count_counts_seed(self):
        # Two near-identical items: neighborhood of either is both items
        vectors = [[1.0, 0.0], [1.0, 0.01], [0.0, 1.0]]
        params = ClusterParameters(min_similarity=0.95, min_neighbor_count=2, max_cluster_size=40)

        clusterer = DensityClusterer(params)
        labels = clusterer.fit_predict(similarity_matrix(vectors))

        self.assertEqual(labels[0], labels[1])
        self.assertEqual(clusterer.n_dense_clusters, 1)

    def test_full_cluster_does_not_absorb_noise(self):
        vectors = [[1.0, 0.0], [1.0, 0.01], [1.0, 0.3]]
        params = ClusterParameters(min_similarity=0.99, min_neighbor_count=2, max_cluster_size=2)

        labels = DensityClusterer(params).fit_predict(similarity_matrix(vectors))

        self.assertEqual(labels[0], labels[1])
        self.assertNotEqual(labels[2], labels[0])

    def test_large_cluster_threshold_tightens_admission(self):
        embeddings = make_groups([30], noise=0.05)
        loose = ClusterParameters(
            min_similarity=0.5, min_neighbor_count=2, max_cluster_size=100,
            large_cluster_size_threshold=100, large_cluster_similarity=0.99,
        )
        strict = ClusterParameters(
            min_similarity=0.5, min_neighbor_count=2, max_cluster_size=100,
            large_cluster_size_threshold=5, large_cluster_similarity=0.99,
        )
        sim = similarity_matrix(embeddings)

        loose_labels = DensityClusterer(loose).fit_predict(sim)
        strict_clusterer = DensityClusterer(strict)
        strict_labels = strict_clusterer.fit_predict(sim)

        self.assertEqual(len(set(loose_labels)), 1)
        self.assertGreater(len(set(strict_labels)), 1)

    def test_deterministic(self):
        embeddings = make_groups([8, 6, 4], noise=0.08)
        params = ClusterParameters(min_similarity=0.85, min_neighbor_count=3, max_cluster_size=40)
        sim = similarity_matrix(embeddings)

        first = DensityClusterer(params).fit_predict(sim)
        second = DensityClusterer(params).fit_predict(sim)

        np.testing.assert_array_equal(first, second)

    def test_empty_matrix_raises(self):
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=40)

        with self.assertRaises(ValueError) as context:
            DensityClusterer(params).fit_predict(np.zeros((0, 0)))

        self.assertIn("empty", str(context.exception))

    def test_non_square_matrix_raises(self):
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=40)

        with self.assertRaises(ValueError):
            DensityClusterer(params).fit_predict(np.zeros((3, 2)))


class TestClusterParameters(unittest.TestCase):

    def test_noise_threshold(self):
        params = ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=40)
        self.assertAlmostEqual(params.noise_threshold, 0.81)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            ClusterParameters(min_similarity=1.5, min_neighbor_count=2, max_cluster_size=40)
        with self.assertRaises(ValueError):
            ClusterParameters(min_similarity=0.9, min_neighbor_count=0, max_cluster_size=40)
        with self.assertRaises(ValueError):
            ClusterParameters(min_similarity=0.9, min_neighbor_count=2, max_cluster_size=0)


if __name__ == '__main__':
    unittest.main()
