"""Transcript reconciliation and sanitization.

Pure, synchronous transformations over ordered sequences of turns:

- reconcile_tool_result: resolve pending tool invocations from a tool turn
- to_ui_view: stored turns -> display turns (tool turns folded into calls)
- sanitize_generated_turns: drop unanswered tool calls and empty text
  from freshly generated turns before they are persisted
- sanitize_ui_view: drop unresolved invocations and empty display turns

None of these functions raise on malformed input. Content that does not
have the expected shape is ignored, so the worst outcome of bad data is a
shorter or less annotated transcript.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from chatline.transcript.schemas import (
    ReasoningPart,
    StoredTurn,
    TextPart,
    ToolCallPart,
    ToolInvocation,
    ToolResultPart,
    Turn,
    UITurn,
)

logger = logging.getLogger(__name__)

_CAMEL_KEYS = {
    "tool_call_id": "toolCallId",
    "tool_name": "toolName",
}


def _get(item: Any, key: str) -> Any:
    """Read a field from a raw mapping (camelCase or snake_case) or a model."""
    if isinstance(item, Mapping):
        camel = _CAMEL_KEYS.get(key, key)
        if camel in item:
            return item[camel]
        return item.get(key)
    if isinstance(item, BaseModel):
        return getattr(item, key, None)
    return None


def _has_call_id(item: Any) -> bool:
    if isinstance(item, Mapping):
        return "toolCallId" in item or "tool_call_id" in item
    return isinstance(item, (ToolCallPart, ToolResultPart))


def _tool_results(content: Any) -> dict[str, Any] | None:
    """Map toolCallId -> result for a tool turn's content.

    Returns None when the content is not a list of parts that each carry a
    toolCallId. The first part for a given id wins.
    """
    if not isinstance(content, list) or not all(_has_call_id(item) for item in content):
        return None
    results: dict[str, Any] = {}
    for item in content:
        call_id = _get(item, "tool_call_id")
        if isinstance(call_id, str):
            results.setdefault(call_id, _get(item, "result"))
    return results


def _resolve(invocations: list[ToolInvocation], results: dict[str, Any]) -> list[ToolInvocation] | None:
    """Resolve pending invocations; None when nothing matched."""
    changed = False
    resolved: list[ToolInvocation] = []
    for invocation in invocations:
        if invocation.state == "call" and invocation.tool_call_id in results:
            invocation = invocation.model_copy(
                update={"state": "result", "result": results[invocation.tool_call_id]}
            )
            changed = True
        resolved.append(invocation)
    return resolved if changed else None


def reconcile_tool_result(tool_turn: Turn | StoredTurn, prior_turns: Sequence[UITurn]) -> list[UITurn]:
    """Apply a tool turn's results to the pending invocations in ``prior_turns``.

    The output has the same length and order as ``prior_turns``; only the
    state and result of matching invocations differ. Invocations without a
    matching result stay in ``call`` state.
    """
    results = _tool_results(tool_turn.content)
    if results is None:
        logger.debug("Ignoring tool turn %s: content is not tool-result shaped", tool_turn.id)
        return list(prior_turns)

    updated: list[UITurn] = []
    for turn in prior_turns:
        if turn.tool_invocations:
            invocations = _resolve(turn.tool_invocations, results)
            if invocations is not None:
                turn = turn.model_copy(update={"tool_invocations": invocations})
        updated.append(turn)
    return updated


def _flatten(content: Any) -> tuple[str, str | None, list[ToolInvocation]]:
    """Split stored content into (text, reasoning, invocations)."""
    if isinstance(content, str):
        return content, None, []
    if not isinstance(content, list):
        return "", None, []

    text = ""
    reasoning: str | None = None
    invocations: list[ToolInvocation] = []
    for item in content:
        kind = _get(item, "type")
        if kind == "text":
            fragment = _get(item, "text")
            if isinstance(fragment, str) and fragment:
                text += fragment
        elif kind == "tool-call":
            call_id = _get(item, "tool_call_id")
            name = _get(item, "tool_name")
            if isinstance(call_id, str) and call_id and isinstance(name, str) and name:
                invocations.append(
                    ToolInvocation(
                        tool_call_id=call_id,
                        tool_name=name,
                        args=_get(item, "args") or {},
                    )
                )
        elif kind == "reasoning":
            value = _get(item, "reasoning")
            if isinstance(value, str) and value:
                # Last reasoning part wins
                reasoning = value
    return text, reasoning, invocations


def to_ui_view(stored_turns: Sequence[StoredTurn | Turn]) -> list[UITurn]:
    """Convert stored turns into display turns.

    Tool turns are not emitted; their results resolve the matching
    invocations of turns already produced. A tool turn that matches nothing
    is dropped.
    """
    ui_turns: list[UITurn] = []
    for turn in stored_turns:
        if turn.role == "tool":
            ui_turns = reconcile_tool_result(turn, ui_turns)
            continue

        text, reasoning, invocations = _flatten(turn.content)
        ui_turns.append(
            UITurn(
                id=turn.id,
                role=turn.role,
                content=text,
                reasoning=reasoning,
                tool_invocations=invocations or None,
                created_at=turn.created_at,
            )
        )
    return ui_turns


def _keep_generated_part(part: Any, result_ids: set[str]) -> bool:
    if isinstance(part, ToolCallPart):
        return part.tool_call_id in result_ids
    if isinstance(part, TextPart):
        return len(part.text) > 0
    return True


def sanitize_generated_turns(turns: Sequence[Turn], reasoning: str | None = None) -> list[Turn]:
    """Clean turns produced by one generation pass before persisting them.

    Tool calls that never received a result and empty text parts are removed
    from assistant turns. When ``reasoning`` is given, a reasoning part is
    appended to every structured assistant turn. Turns left with an empty
    part list are dropped; string-content turns are kept even when empty.
    """
    result_ids: set[str] = set()
    for turn in turns:
        if turn.role == "tool" and isinstance(turn.content, list):
            for part in turn.content:
                if isinstance(part, (ToolResultPart, ToolCallPart)):
                    result_ids.add(part.tool_call_id)

    sanitized: list[Turn] = []
    for turn in turns:
        if turn.role == "assistant" and isinstance(turn.content, list):
            parts = [p for p in turn.content if _keep_generated_part(p, result_ids)]
            if reasoning:
                parts.append(ReasoningPart(reasoning=reasoning))
            turn = turn.model_copy(update={"content": parts})
        sanitized.append(turn)

    return [t for t in sanitized if not (isinstance(t.content, list) and not t.content)]


def sanitize_ui_view(turns: Sequence[UITurn]) -> list[UITurn]:
    """Drop unresolved tool invocations and turns with nothing to show.

    An assistant invocation survives when it is resolved, or when another
    invocation with the same id on the same turn is. A turn survives when
    it has text or at least one invocation. Idempotent.
    """
    sanitized: list[UITurn] = []
    for turn in turns:
        if turn.role == "assistant" and turn.tool_invocations is not None:
            resolved_ids = {i.tool_call_id for i in turn.tool_invocations if i.state == "result"}
            kept = [
                i for i in turn.tool_invocations
                if i.state == "result" or i.tool_call_id in resolved_ids
            ]
            turn = turn.model_copy(update={"tool_invocations": kept or None})
        sanitized.append(turn)

    return [t for t in sanitized if t.content or t.tool_invocations]
