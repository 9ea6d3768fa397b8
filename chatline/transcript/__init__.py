"""Transcript module -- turn schemas, reconciliation and sanitization."""

from chatline.transcript.model_input import to_model_messages
from chatline.transcript.reconciler import (
    reconcile_tool_result,
    sanitize_generated_turns,
    sanitize_ui_view,
    to_ui_view,
)
from chatline.transcript.schemas import (
    ContentPart,
    ReasoningPart,
    StoredTurn,
    TextPart,
    ToolCallPart,
    ToolInvocation,
    ToolResultPart,
    Turn,
    UITurn,
)

__all__ = [
    "ContentPart",
    "ReasoningPart",
    "StoredTurn",
    "TextPart",
    "ToolCallPart",
    "ToolInvocation",
    "ToolResultPart",
    "Turn",
    "UITurn",
    "reconcile_tool_result",
    "sanitize_generated_turns",
    "sanitize_ui_view",
    "to_model_messages",
    "to_ui_view",
]
