"""
Embedding provider adapters.

The clustering engine only needs `embed_batch(texts) -> vectors`; batching and
caching are the caller's job (see embedder.CachedEmbedder).

Default provider is gemini-embedding-001 on Vertex AI (through the Google Gen AI
SDK) truncated to 768 dimensions, the same model and dimensionality used for
every stored centroid.
"""

import logging
import os
from typing import List, Optional, Protocol, Sequence

from common.retry import RetryPolicy

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "gemini-embedding-001"
EMBEDDING_DIMENSIONS = 768


class EmbeddingProvider(Protocol):
    """Anything that turns a batch of texts into vectors, positionally aligned."""

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class VertexEmbeddingProvider:
    """
    Vertex AI text embedding model with retry on rate limits and server errors.

    The Gen AI client is created lazily on the first call so constructing the
    provider never touches the network.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        model_name: str = EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.project_id = project_id or os.environ.get('GCP_PROJECT')
        self.region = region or os.environ.get('GCP_REGION', 'europe-west4')
        self.model_name = model_name
        self.dimensions = dimensions
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, initial_backoff=1.0, max_backoff=32.0)
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai

            logger.info(
                f"Initializing {self.model_name} on Vertex AI "
                f"(project={self.project_id}, region={self.region})"
            )
            self._client = genai.Client(vertexai=True, project=self.project_id, location=self.region)
        return self._client

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed (caller keeps batches within provider limits)

        Returns:
            One vector per input text, in input order

        Raises:
            Exception: If the call still fails after retries
        """
        if not texts:
            return []

        from google.genai import types

        client = self._get_client()
        config = types.EmbedContentConfig(output_dimensionality=self.dimensions)
        response = self.retry_policy.call(
            lambda: client.models.embed_content(model=self.model_name, contents=list(texts), config=config),
            f"Embedding batch of {len(texts)} texts",
        )

        embeddings = response.embeddings or []
        if len(embeddings) != len(texts):
            raise ValueError(
                f"Provider returned {len(embeddings)} embeddings for {len(texts)} texts"
            )

        return [list(embedding.values) for embedding in embeddings]
