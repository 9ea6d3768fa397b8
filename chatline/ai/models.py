"""Chat model catalog and provider model registry.

The catalog lists the logical models a user can pick. The registry maps
logical ids (including the internal title and artifact models) to provider
model names. It is built once from Settings and passed to whoever needs it.
"""

from __future__ import annotations

from dataclasses import dataclass

from chatline.config import Settings

DEFAULT_CHAT_MODEL = "chat-model-small"


@dataclass(frozen=True)
class ChatModel:
    """A model offered in the model picker."""

    id: str
    name: str
    description: str


CHAT_MODELS: list[ChatModel] = [
    ChatModel(
        id="chat-model-small",
        name="Small model",
        description="Small model for fast, lightweight tasks",
    ),
    ChatModel(
        id="chat-model-large",
        name="Large model",
        description="Large model for complex, multi-step tasks",
    ),
    ChatModel(
        id="chat-model-reasoning",
        name="Reasoning model",
        description="Uses advanced reasoning",
    ),
]


@dataclass(frozen=True)
class ModelSpec:
    """Provider model behind a logical id."""

    provider_model: str
    reasoning_tag: str | None = None  # Tag wrapping inline reasoning, if any


class UnknownModelError(KeyError):
    """Raised when a logical model id is not registered."""


class ModelRegistry:
    """Resolves logical model ids to provider models."""

    def __init__(self, models: dict[str, ModelSpec]) -> None:
        self._models = dict(models)

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelRegistry:
        return cls(
            {
                "chat-model-small": ModelSpec(settings.small_model),
                "chat-model-large": ModelSpec(settings.large_model),
                "chat-model-reasoning": ModelSpec(
                    settings.reasoning_model, reasoning_tag=settings.reasoning_tag
                ),
                "title-model": ModelSpec(settings.large_model),
                "artifact-model": ModelSpec(settings.large_model),
            }
        )

    def resolve(self, model_id: str) -> ModelSpec:
        try:
            return self._models[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None

    def is_chat_model(self, model_id: str) -> bool:
        """True for ids a user may select (not internal helper models)."""
        return model_id in self._models and any(m.id == model_id for m in CHAT_MODELS)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models
