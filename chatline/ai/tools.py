"""Tool dispatcher for model tool calls.

Tools are async callables registered with a JSON schema. The dispatcher
exposes their definitions in OpenAI function format and turns every call
into ``(result, is_error)`` so a failing tool never breaks the chat turn.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Registers tool handlers and dispatches tool calls from the model."""

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(self, name: str, handler: Callable[..., Any], schema: dict[str, Any]) -> None:
        """Register a tool handler with its JSON schema."""
        self._handlers[name] = handler
        self._schemas[name] = schema

    async def dispatch(self, name: str, args: dict[str, Any]) -> tuple[Any, bool]:
        """Dispatch a tool call and return (result, is_error).

        Errors are returned as ``{"error": "..."}`` results.
        """
        handler = self._handlers.get(name)
        if not handler:
            return {"error": f"Unknown tool: {name}"}, True
        try:
            return await handler(**args), False
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            return {"error": f"Tool error: {e}"}, True

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in OpenAI function-calling format."""
        definitions = []
        for name, schema in self._schemas.items():
            parameters = {k: v for k, v in schema.items() if k != "description"}
            definitions.append({
                "type": "function",
                "function": {
                    "name": name,
                    "description": schema.get("description", ""),
                    "parameters": parameters,
                },
            })
        return definitions
