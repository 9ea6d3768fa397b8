"""Pydantic models for conversation turns and their content parts.

These models define the public contract for the transcript module. Field
names are snake_case in Python and camelCase on the wire (``toolCallId``,
``toolInvocations``) so stored content stays compatible with AI SDK shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SerializerFunctionWrapHandler, model_serializer
from pydantic.alias_generators import to_camel

Role = Literal["user", "assistant", "tool", "system"]
InvocationState = Literal["call", "result"]


class _WireModel(BaseModel):
    """Frozen model serialised with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# --- Content parts ---


class TextPart(_WireModel):
    """A fragment of message text. Consecutive fragments concatenate."""

    type: Literal["text"] = "text"
    text: str


class ReasoningPart(_WireModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: str


class ToolCallPart(_WireModel):
    """A tool call requested by the assistant."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)


class ToolResultPart(_WireModel):
    """The result of a tool call, carried by a tool-role turn."""

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str = ""
    result: Any = None


ContentPart = Annotated[
    TextPart | ReasoningPart | ToolCallPart | ToolResultPart,
    Field(discriminator="type"),
]


# --- Turns ---


class Turn(_WireModel):
    """One conversational unit with typed content.

    ``content`` is either a plain string (simple turns) or an ordered list of
    content parts (structured turns).
    """

    id: str
    role: Role
    content: str | list[ContentPart]
    created_at: datetime | None = None


class StoredTurn(_WireModel):
    """A persisted turn whose content is raw JSON from the store.

    The content shape is not validated here: the reconciler inspects it
    structurally and ignores anything it does not recognise.
    """

    id: str
    role: str
    content: Any = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Any) -> StoredTurn:
        """Build from an ORM row (anything with id/role/content/created_at)."""
        return cls(
            id=record.id,
            role=record.role,
            content=record.content,
            created_at=record.created_at,
        )


class ToolInvocation(_WireModel):
    """Lifecycle of one tool call: ``call`` until its result arrives."""

    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)
    state: InvocationState = "call"
    result: Any = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        # A resolved call always carries its result, even a null one
        if self.state == "result":
            data.setdefault("result", None)
        return data


class UITurn(_WireModel):
    """A turn shaped for display: text body, reasoning, tool invocations."""

    id: str
    role: str
    content: str = ""
    reasoning: str | None = None
    tool_invocations: list[ToolInvocation] | None = None
    created_at: datetime | None = None
