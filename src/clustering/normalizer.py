"""
Collect clusterable items from upstream records.

Each upstream analysis record may carry several questions (or one
cancellation reason). Items are deduplicated by exact text, first-seen
record wins, so the same question asked in ten posts is clustered once.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .models import Item

logger = logging.getLogger(__name__)


@dataclass
class RawRecord:
    """One piece of text as extracted upstream, before deduplication."""

    text: str
    source_ref: Dict[str, Any] = field(default_factory=dict)


def item_id_for(text: str) -> str:
    """Stable item id: a digest of the exact text."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()[:32]


def clean_text(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    return text.strip()


def collect_items(records: Iterable[RawRecord]) -> List[Item]:
    """
    Turn raw records into unique items, preserving first-seen order.

    Blank texts are dropped. Surrounding whitespace is stripped before the
    exact-match comparison; case and inner whitespace are kept.

    Args:
        records: Upstream records in the order they should be considered

    Returns:
        List of Items with unique text
    """
    items: List[Item] = []
    seen = set()
    total = 0
    blank = 0

    for record in records:
        total += 1
        text = clean_text(record.text)
        if not text:
            blank += 1
            continue
        if text in seen:
            continue
        seen.add(text)
        items.append(Item(id=item_id_for(text), text=text, source_ref=dict(record.source_ref)))

    duplicates = total - blank - len(items)
    logger.info(
        f"Collected {len(items)} unique items from {total} records "
        f"({duplicates} duplicates, {blank} blank)"
    )
    return items
