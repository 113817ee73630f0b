"""Claude on Vertex AI through the Anthropic SDK."""

import logging
import os
from typing import Any, Dict, Optional

from anthropic import AnthropicVertex

from common.retry import RetryPolicy

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class ClaudeClient(BaseLLMClient):
    """
    Args:
        model_id: Vertex model ID including the version suffix
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
        region: Region serving Claude (uses CLAUDE_REGION env var if None)
        retry_policy: Retry policy for generate calls
    """

    def __init__(
        self,
        model_id: str = "claude-haiku-4-5@20251001",
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(
            model_id,
            project_id or os.environ.get('GCP_PROJECT'),
            region or os.environ.get('CLAUDE_REGION', 'europe-west1'),
            retry_policy,
        )

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.CLAUDE

    def _connect(self) -> AnthropicVertex:
        logger.info(f"Connecting to Claude {self.model_id} in {self.region} (project {self.project_id})")
        return AnthropicVertex(project_id=self.project_id, region=self.region)

    def _generate_once(self, prompt: str, config: GenerationConfig, system_prompt: Optional[str]) -> LLMResponse:
        request: Dict[str, Any] = {
            "model": self.model_id,
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt
        if config.top_k:
            request["top_k"] = config.top_k
        request.update(config.extra)

        message = self._client.messages.create(**request)

        # Only text blocks carry the answer
        text = "".join(block.text for block in (message.content or []) if hasattr(block, 'text'))
        if not text.strip():
            raise ValueError(f"Claude returned no text (stop reason: {message.stop_reason})")

        return LLMResponse(
            text=text,
            model=self.model_id,
            provider=self.provider,
            input_tokens=message.usage.input_tokens if message.usage else None,
            output_tokens=message.usage.output_tokens if message.usage else None,
            finish_reason=message.stop_reason,
        )
