"""chatstream provider layer.

All LLM interactions go through LiteLLMProvider via the ModelProvider
interface.
"""

from chatstream.providers.base import ChunkHandler, ModelProvider
from chatstream.providers.litellm_provider import LiteLLMProvider
from chatstream.providers.registry import load_chat_config, load_models, resolve_model

__all__ = [
    "ChunkHandler",
    "LiteLLMProvider",
    "ModelProvider",
    "load_chat_config",
    "load_models",
    "resolve_model",
]
