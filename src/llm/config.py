"""
Which model labels the clusters.

Environment Variables:
    LLM_MODEL: Model name or alias (e.g., "gemini-2.5-flash", "haiku")
    LLM_PROVIDER: Provider preference when LLM_MODEL is unset ("gemini" or "claude")
    GCP_PROJECT: GCP project ID
    GCP_REGION: GCP region for Gemini
    CLAUDE_REGION: GCP region for Claude
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from .base import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_CLAUDE_MODEL = "claude-haiku-4-5"


@dataclass(frozen=True)
class ModelInfo:
    model_id: str
    provider: LLMProvider
    default_region: str


# Labels are a few words each, so only small fast models are registered
MODEL_REGISTRY: Dict[str, ModelInfo] = {
    "gemini-2.5-flash": ModelInfo("gemini-2.5-flash", LLMProvider.GEMINI, "europe-west4"),
    "claude-haiku-4-5": ModelInfo("claude-haiku-4-5@20251001", LLMProvider.CLAUDE, "europe-west1"),
}

MODEL_ALIASES: Dict[str, str] = {
    "gemini": "gemini-2.5-flash",
    "gemini-flash": "gemini-2.5-flash",
    "claude": "claude-haiku-4-5",
    "claude-haiku": "claude-haiku-4-5",
    "haiku": "claude-haiku-4-5",
}


def resolve_model_name(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_model_info(name: str) -> Optional[ModelInfo]:
    return MODEL_REGISTRY.get(resolve_model_name(name))


def get_default_model() -> str:
    """
    Pick the model from LLM_MODEL, then LLM_PROVIDER, then the default.

    An unknown LLM_MODEL is logged and ignored.
    """
    requested = os.environ.get('LLM_MODEL')
    if requested:
        name = resolve_model_name(requested)
        if name in MODEL_REGISTRY:
            logger.info(f"Using model from LLM_MODEL: {name}")
            return name
        logger.warning(f"Unknown LLM_MODEL '{requested}', using {DEFAULT_MODEL}")

    if os.environ.get('LLM_PROVIDER', '').lower() == LLMProvider.CLAUDE.value:
        return DEFAULT_CLAUDE_MODEL
    return DEFAULT_MODEL


def get_region(info: ModelInfo) -> str:
    """Region for a model: CLAUDE_REGION / GCP_REGION, else the model's default."""
    env_name = 'CLAUDE_REGION' if info.provider == LLMProvider.CLAUDE else 'GCP_REGION'
    return os.environ.get(env_name, info.default_region)
