"""Tests for transcript schemas: wire aliases, part discrimination, immutability."""

import pytest
from pydantic import TypeAdapter, ValidationError

from chatline.transcript import (
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


def test_tool_call_part_serialises_camel_case():
    part = ToolCallPart(tool_call_id="c1", tool_name="generate_image", args={"prompt": "cat"})

    assert part.to_wire() == {
        "type": "tool-call",
        "toolCallId": "c1",
        "toolName": "generate_image",
        "args": {"prompt": "cat"},
    }


def test_parts_accept_camel_case_input():
    part = ToolResultPart.model_validate({"toolCallId": "c1", "toolName": "x", "result": 1})
    assert part.tool_call_id == "c1"
    assert part.result == 1


def test_content_part_discriminates_on_type():
    adapter = TypeAdapter(list[ContentPart])
    parts = adapter.validate_python([
        {"type": "text", "text": "hi"},
        {"type": "reasoning", "reasoning": "hmm"},
        {"type": "tool-call", "toolCallId": "c1", "toolName": "x"},
        {"type": "tool-result", "toolCallId": "c1", "result": "ok"},
    ])

    assert [type(p) for p in parts] == [TextPart, ReasoningPart, ToolCallPart, ToolResultPart]


def test_unknown_part_type_rejected_by_typed_turn():
    with pytest.raises(ValidationError):
        Turn(id="a1", role="assistant", content=[{"type": "image", "url": "x"}])


def test_turn_rejects_unknown_role():
    with pytest.raises(ValidationError):
        Turn(id="a1", role="narrator", content="hi")


def test_stored_turn_accepts_arbitrary_content():
    turn = StoredTurn(id="a1", role="tool", content={"anything": ["goes"]})
    assert turn.content == {"anything": ["goes"]}


def test_models_are_frozen():
    part = TextPart(text="hi")
    with pytest.raises(ValidationError):
        part.text = "bye"


def test_ui_turn_wire_omits_none_fields():
    turn = UITurn(
        id="a1",
        role="assistant",
        content="Done",
        tool_invocations=[ToolInvocation(tool_call_id="c1", tool_name="x", state="result", result=3)],
    )

    wire = turn.to_wire()

    assert "reasoning" not in wire
    assert "createdAt" not in wire
    assert wire["toolInvocations"] == [
        {"toolCallId": "c1", "toolName": "x", "args": {}, "state": "result", "result": 3}
    ]


def test_stored_turn_from_record():
    class Row:
        id = "m1"
        role = "user"
        content = "Hi"
        created_at = None

    turn = StoredTurn.from_record(Row())
    assert (turn.id, turn.role, turn.content) == ("m1", "user", "Hi")


def test_resolved_invocation_with_null_result_keeps_result_key():
    turn = UITurn(
        id="a1",
        role="assistant",
        tool_invocations=[ToolInvocation(tool_call_id="c1", tool_name="x", state="result", result=None)],
    )

    invocation = turn.to_wire()["toolInvocations"][0]

    assert invocation["state"] == "result"
    assert "result" in invocation
    assert invocation["result"] is None


def test_pending_invocation_omits_result():
    wire = ToolInvocation(tool_call_id="c1", tool_name="x").to_wire()
    assert wire == {"toolCallId": "c1", "toolName": "x", "args": {}, "state": "call"}
