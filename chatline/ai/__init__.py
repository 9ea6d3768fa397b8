"""AI module -- model catalog, provider client, tools and chat runner."""

from chatline.ai.client import Completion, ModelClient, ModelProviderError, ToolCallRequest
from chatline.ai.models import CHAT_MODELS, DEFAULT_CHAT_MODEL, ChatModel, ModelRegistry, ModelSpec
from chatline.ai.reasoning import extract_reasoning
from chatline.ai.tools import ToolDispatcher

__all__ = [
    "CHAT_MODELS",
    "DEFAULT_CHAT_MODEL",
    "ChatModel",
    "Completion",
    "ModelClient",
    "ModelProviderError",
    "ModelRegistry",
    "ModelSpec",
    "ToolCallRequest",
    "ToolDispatcher",
    "extract_reasoning",
]
