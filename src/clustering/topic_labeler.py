"""
Short human-readable topic names for clusters.

A sample of member texts goes to the LLM with a tight token budget; the
answer is cleaned up (quotes, "Topic:" prefixes, the product name) and
capitalized. Any failure yields the placeholder topic so a labeling outage
never blocks a rebuild.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from llm import BaseLLMClient, GenerationConfig, get_client

from .config import ClusteringConfig, ItemKind
from .models import PLACEHOLDER_TOPIC, Cluster

logger = logging.getLogger(__name__)

LABEL_GENERATION = GenerationConfig(temperature=0.2, max_output_tokens=15)

SYSTEM_PROMPTS: Dict[ItemKind, str] = {
    ItemKind.QUESTIONS: (
        "You are a labeling assistant that creates short, descriptive topics for "
        "clusters of questions asked by {product} users. Create concise, specific topics."
    ),
    ItemKind.CANCELLATION_REASONS: (
        "You are a labeling assistant that creates short, descriptive topics for "
        "clusters of cancellation reasons for {product} users. Create concise, specific topics."
    ),
}

USER_PROMPT = (
    "Here are {sample_size} {noun} from a cluster of {total} total {noun} about {product}:\n\n"
    "{sample}\n\n"
    "Provide a concise topic (2-5 words) that captures what they have in common."
)

_QUOTES = '"\'“”‘’`'


def sanitize_topic(raw: Optional[str], product_name: Optional[str] = None) -> str:
    """
    Clean up an LLM topic answer.

    Strips surrounding quotes, a leading "Topic:" and a leading product name,
    then upper-cases the first letter. Empty results become the placeholder.
    """
    if not raw:
        return PLACEHOLDER_TOPIC

    topic = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    topic = topic.strip(_QUOTES).strip()
    topic = re.sub(r'^topic\s*:\s*', '', topic, flags=re.IGNORECASE)
    topic = topic.strip(_QUOTES).strip()

    if product_name:
        topic = re.sub(rf'^{re.escape(product_name)}\s+', '', topic, flags=re.IGNORECASE)

    topic = topic.rstrip('.').strip()
    if not topic:
        return PLACEHOLDER_TOPIC

    return topic[0].upper() + topic[1:]


def select_label_sample(member_texts: Sequence[str], representative_text: Optional[str], size: int) -> List[str]:
    """Representative first, then other members in order, up to `size` texts."""
    sample: List[str] = []
    if representative_text:
        sample.append(representative_text)
    for text in member_texts:
        if len(sample) >= size:
            break
        if text != representative_text:
            sample.append(text)
    return sample[:size]


class TopicLabeler:
    """
    Label clusters with an LLM.

    Args:
        config: Clustering config (item kind, product name, sample size)
        client: LLM client (created from LLM_MODEL / LLM_PROVIDER if None)
    """

    def __init__(self, config: ClusteringConfig, client: Optional[BaseLLMClient] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> BaseLLMClient:
        if self._client is None:
            self._client = get_client()
        return self._client

    def build_prompt(self, sample: Sequence[str], total: int) -> str:
        return USER_PROMPT.format(
            sample_size=len(sample),
            noun=self.config.item_noun,
            total=total,
            product=self.config.product_name,
            sample="\n".join(sample),
        )

    def label(self, sample: Sequence[str], total: Optional[int] = None) -> str:
        """
        Topic for a cluster given a sample of its texts.

        Returns:
            Sanitized topic, or the placeholder if the LLM call fails
        """
        if not sample:
            return PLACEHOLDER_TOPIC

        prompt = self.build_prompt(sample, total or len(sample))
        system_prompt = SYSTEM_PROMPTS[self.config.kind].format(product=self.config.product_name)

        try:
            response = self.client.generate(prompt, config=LABEL_GENERATION, system_prompt=system_prompt)
        except Exception as e:
            logger.warning(f"Topic labeling failed, using '{PLACEHOLDER_TOPIC}': {e}")
            return PLACEHOLDER_TOPIC

        return sanitize_topic(response.text, self.config.product_name)

    def label_clusters(
        self,
        clusters: Sequence[Cluster],
        texts_by_id: Dict[str, str],
        before_each: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Set topic_label on every cluster in place.

        before_each runs ahead of every LLM call; an exception from it stops
        the labeling.
        """
        for index, cluster in enumerate(clusters, start=1):
            if before_each is not None:
                before_each()
            member_texts = [texts_by_id[item_id] for item_id in cluster.member_item_ids]
            sample = select_label_sample(
                member_texts,
                texts_by_id.get(cluster.representative_item_id),
                self.config.label_sample_size,
            )
            cluster.topic_label = self.label(sample, total=cluster.size)
            logger.info(f"  Cluster {index}/{len(clusters)} ({cluster.size} items): {cluster.topic_label}")
