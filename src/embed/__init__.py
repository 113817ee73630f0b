"""
Text embedding for the clustering engine.

Provides the Vertex AI embedding provider, a local JSON cache keyed by exact
text, and the CachedEmbedder that combines both with bounded batching.
"""

from .cache import EmbeddingCache
from .embedder import CachedEmbedder, EmbeddingResult
from .provider import EMBEDDING_DIMENSIONS, EmbeddingProvider, VertexEmbeddingProvider

__all__ = [
    'CachedEmbedder',
    'EmbeddingCache',
    'EmbeddingProvider',
    'EmbeddingResult',
    'EMBEDDING_DIMENSIONS',
    'VertexEmbeddingProvider',
]
