"""
Shared types for the labeling LLM clients.

Gemini and Claude are both served from Vertex AI; the topic labeler only sees
BaseLLMClient.generate() and the text of the LLMResponse.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from common.retry import RetryPolicy


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass
class GenerationConfig:
    """Sampling settings understood by both providers."""
    temperature: float = 0.7
    max_output_tokens: int = 1024
    top_p: float = 0.95
    top_k: Optional[int] = None
    # Passed through unchanged to the provider SDK
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    text: str
    model: str
    provider: LLMProvider
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    finish_reason: Optional[str] = None


class BaseLLMClient(ABC):
    """
    One model on one provider.

    Subclasses create their SDK client in _connect() (called on first use)
    and implement a single un-retried call in _generate_once().

    Args:
        model_id: Provider model ID
        project_id: GCP project ID
        region: Vertex AI region serving the model
        retry_policy: Retry policy wrapped around every generate() call
    """

    def __init__(
        self,
        model_id: str,
        project_id: Optional[str],
        region: str,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.model_id = model_id
        self.project_id = project_id
        self.region = region
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = None

    @property
    @abstractmethod
    def provider(self) -> LLMProvider:
        ...

    @abstractmethod
    def _connect(self) -> Any:
        """Return a ready SDK client."""

    @abstractmethod
    def _generate_once(self, prompt: str, config: GenerationConfig, system_prompt: Optional[str]) -> LLMResponse:
        """Single provider call. Raises ValueError on an empty answer."""

    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """
        Run a prompt through the model, retrying transient provider errors.

        Raises:
            Exception: The last provider error once retries are exhausted
        """
        if self._client is None:
            self._client = self._connect()
        config = config or GenerationConfig()

        return self.retry_policy.call(
            lambda: self._generate_once(prompt, config, system_prompt),
            f"{self.provider.value} generation ({self.model_id})",
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model_id}, region={self.region})"
