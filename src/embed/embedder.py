"""
Cache-backed embedding adapter.

Splits the requested texts into cache hits and misses, embeds the misses in
bounded batches, and returns vectors aligned to the input. A failed batch does
not abort the run: its texts come back without a vector and with an error, so
the caller can leave them out of the clustering round.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .cache import EmbeddingCache
from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class EmbeddingResult:
    """Vectors aligned to the input texts; `None` where embedding failed."""

    vectors: List[Optional[List[float]]]
    errors: Dict[int, str] = field(default_factory=dict)
    cache_hits: int = 0
    generated: int = 0

    @property
    def failed_indices(self) -> List[int]:
        return sorted(self.errors)

    @property
    def ok_indices(self) -> List[int]:
        return [i for i, vector in enumerate(self.vectors) if vector is not None]


class CachedEmbedder:
    """
    Embed texts through a persistent cache.

    Args:
        provider: External embedding provider (None only makes sense offline)
        cache: Loaded EmbeddingCache for this item kind
        batch_size: Max texts per provider call
        offline: Only serve cached vectors, never call the provider
        expected_dimensions: Reject provider vectors of any other length
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        cache: EmbeddingCache,
        batch_size: int = DEFAULT_BATCH_SIZE,
        offline: bool = False,
        expected_dimensions: Optional[int] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if provider is None and not offline:
            raise ValueError("An embedding provider is required unless running offline")

        self.provider = provider
        self.cache = cache
        self.batch_size = batch_size
        self.offline = offline
        self.expected_dimensions = expected_dimensions

    def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        """
        Embed texts, calling the provider only for cache misses.

        Args:
            texts: Texts to embed (duplicates are embedded once)

        Returns:
            EmbeddingResult aligned positionally to `texts`
        """
        result = EmbeddingResult(vectors=[None] * len(texts))

        # text -> positions still waiting for a vector
        pending: Dict[str, List[int]] = {}

        for index, text in enumerate(texts):
            cached = self.cache.get(text)
            if cached is not None:
                result.vectors[index] = cached
                result.cache_hits += 1
            else:
                pending.setdefault(text, []).append(index)

        if not pending:
            logger.info(f"All {len(texts)} embeddings found in cache")
            return result

        if self.offline:
            logger.warning(f"Offline mode: {len(pending)} texts have no cached embedding")
            for positions in pending.values():
                for index in positions:
                    result.errors[index] = "not cached (offline mode)"
            return result

        uncached = list(pending)
        total_batches = (len(uncached) + self.batch_size - 1) // self.batch_size
        logger.info(
            f"Generating {len(uncached)} new embeddings in {total_batches} batch(es) "
            f"({result.cache_hits} cache hits)"
        )

        for batch_number, start in enumerate(range(0, len(uncached), self.batch_size), start=1):
            batch = uncached[start:start + self.batch_size]

            try:
                vectors = self.provider.embed_batch(batch)
            except Exception as e:
                logger.error(f"Embedding batch {batch_number}/{total_batches} failed: {e}")
                for text in batch:
                    for index in pending[text]:
                        result.errors[index] = f"embedding batch failed: {e}"
                continue

            for text, vector in zip(batch, vectors):
                if self.expected_dimensions and len(vector) != self.expected_dimensions:
                    logger.warning(
                        f"Discarding embedding with {len(vector)} dimensions "
                        f"(expected {self.expected_dimensions})"
                    )
                    for index in pending[text]:
                        result.errors[index] = f"wrong embedding dimension: {len(vector)}"
                    continue

                self.cache.put(text, vector)
                result.generated += 1
                for index in pending[text]:
                    result.vectors[index] = self.cache.get(text)

            logger.info(f"Processed embedding batch {batch_number}/{total_batches}")

        return result
