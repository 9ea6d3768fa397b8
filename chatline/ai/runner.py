"""Chat runner -- executes one chat round against the model.

Flow per turn:
  save user turn -> rebuild model input from stored history
  -> tool loop (model call, dispatch tools, repeat)
  -> sanitize generated turns -> persist -> return display turns
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from chatline.ai.client import Completion, ModelClient
from chatline.ai.models import DEFAULT_CHAT_MODEL
from chatline.ai.tools import ToolDispatcher
from chatline.config import Settings
from chatline.storage.queries import ChatStore, message_from_turn
from chatline.transcript import (
    ContentPart,
    StoredTurn,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Turn,
    UITurn,
    sanitize_generated_turns,
    sanitize_ui_view,
    to_model_messages,
    to_ui_view,
)
from chatline.utils import generate_uuid

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly assistant! Keep your responses concise and helpful. "
    "When asked for a picture, use the generate_image tool and show the returned URL."
)

TITLE_PROMPT = (
    "- you will generate a short title based on the first message a user begins a conversation with\n"
    "- ensure it is not more than 80 characters long\n"
    "- the title should be a summary of the user's message\n"
    "- do not use quotes or colons"
)

MAX_TITLE_LENGTH = 80


def _now() -> datetime:
    return datetime.now(UTC)


def _stamp_after(turns: list[Turn], previous: datetime) -> list[Turn]:
    """Give turns strictly increasing created_at values later than ``previous``."""
    stamped: list[Turn] = []
    for turn in turns:
        created_at = turn.created_at or _now()
        if created_at <= previous:
            created_at = previous + timedelta(microseconds=1)
        stamped.append(turn.model_copy(update={"created_at": created_at}))
        previous = created_at
    return stamped


class ChatRunner:
    """Runs chat turns: model calls, tool loop and persistence."""

    def __init__(
        self,
        store: ChatStore,
        client: ModelClient,
        dispatcher: ToolDispatcher,
        settings: Settings,
    ) -> None:
        self._store = store
        self._client = client
        self._dispatcher = dispatcher
        self._settings = settings

    async def generate_title(self, user_message: str) -> str:
        """Short chat title from the first user message.

        Falls back to the truncated message when the title model fails.
        """
        try:
            completion = await self._client.complete(
                "title-model",
                [Turn(id=generate_uuid(), role="user", content=user_message)],
                system=TITLE_PROMPT,
            )
            title = completion.text.strip().strip('"').replace(":", "")
        except Exception as e:
            logger.warning("Failed to generate chat title: %s", e)
            title = ""
        return (title or user_message.strip() or "New chat")[:MAX_TITLE_LENGTH]

    async def load_history(self, chat_id: str) -> list[Turn]:
        """Model input rebuilt from the stored transcript."""
        records = await self._store.get_messages_by_chat_id(chat_id)
        ui_turns = sanitize_ui_view(to_ui_view([StoredTurn.from_record(r) for r in records]))
        return to_model_messages(ui_turns)

    async def run_turn(
        self,
        chat_id: str,
        user_id: str,
        user_message: str,
        model_id: str = DEFAULT_CHAT_MODEL,
    ) -> list[UITurn]:
        """Execute one chat round and return the new turns for display.

        Steps:
        1. Create the chat (with a generated title) if it does not exist
        2. Persist the user turn
        3. Rebuild model input from the stored history
        4. Run the tool loop
        5. Sanitize the generated turns and persist them
        """
        chat = await self._store.get_chat_by_id(chat_id)
        if chat is None:
            title = await self.generate_title(user_message)
            await self._store.save_chat(id=chat_id, user_id=user_id, title=title)

        user_turn = Turn(id=generate_uuid(), role="user", content=user_message, created_at=_now())
        await self._store.save_messages([message_from_turn(chat_id, user_turn)])

        history = await self.load_history(chat_id)
        generated, reasoning = await self._tool_loop(model_id, history)

        sanitized = _stamp_after(sanitize_generated_turns(generated, reasoning), user_turn.created_at)
        await self._store.save_messages([message_from_turn(chat_id, t) for t in sanitized])
        logger.info(
            "Chat %s: %d generated turns, %d kept after sanitizing",
            chat_id[:8], len(generated), len(sanitized),
        )
        return to_ui_view(sanitized)

    async def _tool_loop(self, model_id: str, history: list[Turn]) -> tuple[list[Turn], str | None]:
        """Call the model until it stops requesting tools or steps run out.

        Returns the generated assistant/tool turns and the reasoning of the
        most recent completion that produced any.
        """
        messages = list(history)
        generated: list[Turn] = []
        reasoning: str | None = None
        tools = self._dispatcher.tool_definitions() or None

        for step in range(self._settings.max_steps):
            completion = await self._client.complete(
                model_id, messages, system=SYSTEM_PROMPT, tools=tools
            )
            if completion.reasoning:
                reasoning = completion.reasoning

            assistant_turn = self._assistant_turn(completion)
            generated.append(assistant_turn)
            messages.append(assistant_turn)

            if not completion.tool_calls:
                break

            tool_turn = await self._run_tools(completion)
            generated.append(tool_turn)
            messages.append(tool_turn)
        else:
            logger.warning("Tool loop hit max_steps (%d) for model %s", self._settings.max_steps, model_id)

        return generated, reasoning

    def _assistant_turn(self, completion: Completion) -> Turn:
        parts: list[ContentPart] = [TextPart(text=completion.text)]
        parts.extend(
            ToolCallPart(tool_call_id=call.id, tool_name=call.name, args=call.arguments)
            for call in completion.tool_calls
        )
        return Turn(id=generate_uuid(), role="assistant", content=parts, created_at=_now())

    async def _run_tools(self, completion: Completion) -> Turn:
        results: list[ContentPart] = []
        for call in completion.tool_calls:
            result, is_error = await self._dispatcher.dispatch(call.name, call.arguments)
            if is_error:
                logger.warning("Tool %s failed: %s", call.name, result)
            results.append(ToolResultPart(tool_call_id=call.id, tool_name=call.name, result=result))
        return Turn(id=generate_uuid(), role="tool", content=results, created_at=_now())
