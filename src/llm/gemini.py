"""Gemini on Vertex AI through the Google Gen AI SDK."""

import logging
import os
from typing import Optional

from google import genai
from google.genai import types

from common.retry import RetryPolicy

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class GeminiClient(BaseLLMClient):
    """
    Args:
        model_id: Gemini model ID
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
        region: GCP region (uses GCP_REGION env var if None)
        retry_policy: Retry policy for generate calls
    """

    def __init__(
        self,
        model_id: str = "gemini-2.5-flash",
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(
            model_id,
            project_id or os.environ.get('GCP_PROJECT'),
            region or os.environ.get('GCP_REGION', 'europe-west4'),
            retry_policy,
        )

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.GEMINI

    def _connect(self) -> genai.Client:
        logger.info(f"Connecting to Gemini {self.model_id} in {self.region} (project {self.project_id})")
        return genai.Client(vertexai=True, project=self.project_id, location=self.region)

    def _generate_once(self, prompt: str, config: GenerationConfig, system_prompt: Optional[str]) -> LLMResponse:
        response = self._client.models.generate_content(
            model=self.model_id,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=config.temperature,
                max_output_tokens=config.max_output_tokens,
                top_p=config.top_p,
                top_k=config.top_k,
                system_instruction=system_prompt,
                **config.extra,
            ),
        )

        finish_reason = None
        if response.candidates:
            finish_reason = getattr(response.candidates[0], 'finish_reason', None)

        if not response.text or not response.text.strip():
            raise ValueError(f"Gemini returned no text (finish reason: {finish_reason})")

        usage = response.usage_metadata
        return LLMResponse(
            text=response.text,
            model=self.model_id,
            provider=self.provider,
            input_tokens=usage.prompt_token_count if usage else None,
            output_tokens=usage.candidates_token_count if usage else None,
            finish_reason=str(finish_reason) if finish_reason else None,
        )
