"""Conversion of display turns back into model-input turns."""

from __future__ import annotations

from collections.abc import Sequence

from chatline.transcript.schemas import (
    ContentPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Turn,
    UITurn,
)


def to_model_messages(ui_turns: Sequence[UITurn]) -> list[Turn]:
    """Flatten display turns into the turn sequence a model expects.

    An assistant turn with resolved invocations becomes an assistant turn
    carrying the text and tool-call parts, followed by a tool turn with the
    results. Pending invocations are left out because a provider rejects a
    tool call that has no result. Reasoning is display-only and not sent.
    """
    messages: list[Turn] = []
    for turn in ui_turns:
        if turn.role not in ("user", "assistant", "system"):
            continue

        resolved = [i for i in turn.tool_invocations or [] if i.state == "result"]
        if turn.role != "assistant" or not resolved:
            if turn.content:
                messages.append(
                    Turn(id=turn.id, role=turn.role, content=turn.content, created_at=turn.created_at)
                )
            continue

        parts: list[ContentPart] = []
        if turn.content:
            parts.append(TextPart(text=turn.content))
        parts.extend(
            ToolCallPart(tool_call_id=i.tool_call_id, tool_name=i.tool_name, args=i.args)
            for i in resolved
        )
        messages.append(Turn(id=turn.id, role="assistant", content=parts, created_at=turn.created_at))
        messages.append(
            Turn(
                id=f"{turn.id}:tool",
                role="tool",
                content=[
                    ToolResultPart(tool_call_id=i.tool_call_id, tool_name=i.tool_name, result=i.result)
                    for i in resolved
                ],
                created_at=turn.created_at,
            )
        )
    return messages
