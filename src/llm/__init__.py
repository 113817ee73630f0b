"""
LLM clients for cluster topic labeling.

Usage:
    from llm import get_client
    client = get_client()              # LLM_MODEL / LLM_PROVIDER or gemini-2.5-flash
    client = get_client("haiku")
    response = client.generate("Name the topic of these questions: ...")
"""

import logging
import os
from typing import Dict, Optional, Type

from common.retry import RetryPolicy

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse
from .claude import ClaudeClient
from .config import MODEL_ALIASES, MODEL_REGISTRY, get_default_model, get_model_info, get_region
from .gemini import GeminiClient

logger = logging.getLogger(__name__)

CLIENT_CLASSES: Dict[LLMProvider, Type[BaseLLMClient]] = {
    LLMProvider.GEMINI: GeminiClient,
    LLMProvider.CLAUDE: ClaudeClient,
}

_clients: Dict[str, BaseLLMClient] = {}


def get_client(
    model: Optional[str] = None,
    project_id: Optional[str] = None,
    region: Optional[str] = None,
    retry_policy: Optional[RetryPolicy] = None,
    cache: bool = True,
) -> BaseLLMClient:
    """
    Client for a model name or alias (environment default if None).

    Clients are reused per (model, project, region) unless cache is False.

    Raises:
        ValueError: If the model is not registered
    """
    info = get_model_info(model or get_default_model())
    if info is None:
        known = ", ".join(sorted(set(MODEL_REGISTRY) | set(MODEL_ALIASES)))
        raise ValueError(f"Unknown model: {model}. Available: {known}")

    project_id = project_id or os.environ.get('GCP_PROJECT')
    region = region or get_region(info)

    key = f"{info.model_id}:{project_id}:{region}"
    if cache and key in _clients:
        return _clients[key]

    client = CLIENT_CLASSES[info.provider](
        model_id=info.model_id,
        project_id=project_id,
        region=region,
        retry_policy=retry_policy,
    )
    logger.info(f"Created LLM client: {client}")

    if cache:
        _clients[key] = client
    return client


def clear_cache() -> None:
    _clients.clear()


__all__ = [
    'BaseLLMClient',
    'GenerationConfig',
    'LLMProvider',
    'LLMResponse',
    'clear_cache',
    'get_client',
    'get_default_model',
]
