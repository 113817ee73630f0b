"""
Local persistent embedding cache keyed by exact text.

Entries are never invalidated: text is assumed to keep its meaning, so an
embedding computed once is reused by every later run.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    JSON-file backed text → vector map.

    Lifecycle is explicit: `load()` at run start, `save()` at run end. Nothing
    is written until `save()` is called.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._vectors: Dict[str, List[float]] = {}
        self._dirty = False

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, text: str) -> bool:
        return text in self._vectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._vectors)

    def get(self, text: str) -> Optional[List[float]]:
        return self._vectors.get(text)

    def put(self, text: str, vector: List[float]) -> None:
        if text not in self._vectors:
            self._vectors[text] = [float(v) for v in vector]
            self._dirty = True

    @property
    def dirty(self) -> bool:
        return self._dirty

    def load(self) -> int:
        """
        Load cached embeddings from disk.

        A missing or unreadable cache file yields an empty cache rather than
        an error: every text then simply counts as a miss.

        Returns:
            Number of cached embeddings available
        """
        if self.path is None or not self.path.exists():
            logger.info("No embedding cache found, all embeddings will be generated")
            return 0

        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read embedding cache {self.path}: {e}")
            return 0

        if not isinstance(data, dict):
            logger.warning(f"Ignoring embedding cache {self.path}: expected a JSON object")
            return 0

        self._vectors = {
            text: vector for text, vector in data.items()
            if isinstance(vector, list) and vector
        }
        self._dirty = False
        logger.info(f"Loaded {len(self._vectors)} cached embeddings from {self.path}")
        return len(self._vectors)

    def save(self) -> bool:
        """
        Persist the cache if anything was added since the last load/save.

        Returns:
            True if the file was written
        """
        if self.path is None or not self._dirty:
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')

        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._vectors, f)
        tmp_path.replace(self.path)

        self._dirty = False
        logger.info(f"Embedding cache updated ({len(self._vectors)} entries)")
        return True
