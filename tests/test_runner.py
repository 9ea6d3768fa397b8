"""Tests for ChatRunner -- tool loop, sanitization and persistence.

Uses the SQLite-backed store and a ModelClient whose complete() is an
AsyncMock returning scripted completions.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatline.ai.client import Completion, ModelClient, ModelProviderError, ToolCallRequest
from chatline.ai.runner import MAX_TITLE_LENGTH, TITLE_PROMPT, ChatRunner
from chatline.ai.tools import ToolDispatcher
from chatline.transcript import StoredTurn, to_ui_view


def _mock_client(*completions) -> MagicMock:
    """ModelClient mock; records a snapshot of the messages of each call."""
    client = MagicMock(spec=ModelClient)
    client.seen = []
    scripted = iter(completions)

    async def _complete(model_id, messages, system=None, tools=None):
        client.seen.append(list(messages))
        outcome = next(scripted)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client.complete = AsyncMock(side_effect=_complete)
    return client


async def _fake_image(prompt: str, aspect_ratio: str = "16:9") -> dict:
    return {"imageUrl": f"https://i.imgur.com/{prompt.replace(' ', '-')}.png"}


@pytest.fixture
def dispatcher():
    d = ToolDispatcher()
    d.register(
        "generate_image",
        _fake_image,
        {"type": "object", "description": "Generate an image", "properties": {"prompt": {"type": "string"}}},
    )
    return d


@pytest.fixture
def make_runner(store, dispatcher, settings):
    def _make(*completions: Completion) -> ChatRunner:
        return ChatRunner(store, _mock_client(*completions), dispatcher, settings)

    return _make


async def _stored_ui(store, chat_id):
    records = await store.get_messages_by_chat_id(chat_id)
    return to_ui_view([StoredTurn.from_record(r) for r in records])


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------


async def test_generate_title_strips_quotes_and_colons(make_runner):
    runner = make_runner(Completion(text='"Cats: a primer"'))

    title = await runner.generate_title("Tell me about cats")

    assert title == "Cats a primer"
    kwargs = runner._client.complete.call_args.kwargs
    assert kwargs["system"] == TITLE_PROMPT
    assert runner._client.complete.call_args.args[0] == "title-model"


async def test_generate_title_falls_back_to_message(make_runner):
    runner = make_runner(ModelProviderError("down", status_code=503))

    title = await runner.generate_title("x" * 200)

    assert title == "x" * MAX_TITLE_LENGTH


# ---------------------------------------------------------------------------
# run_turn
# ---------------------------------------------------------------------------


async def test_run_turn_plain_answer(make_runner, store):
    runner = make_runner(Completion(text="Hello chat"), Completion(text="Hi there!"))

    ui = await runner.run_turn("chat-1", "user-1", "Hi")

    assert [(t.role, t.content) for t in ui] == [("assistant", "Hi there!")]
    chat = await store.get_chat_by_id("chat-1")
    assert chat.title == "Hello chat"
    assert chat.user_id == "user-1"

    stored = await _stored_ui(store, "chat-1")
    assert [(t.role, t.content) for t in stored] == [("user", "Hi"), ("assistant", "Hi there!")]


async def test_run_turn_existing_chat_skips_title(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="Existing")
    runner = make_runner(Completion(text="Sure"))

    await runner.run_turn("chat-1", "user-1", "Again")

    assert runner._client.complete.await_count == 1
    assert (await store.get_chat_by_id("chat-1")).title == "Existing"


async def test_run_turn_with_tool_call(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="Pics")
    runner = make_runner(
        Completion(
            text="",
            tool_calls=[ToolCallRequest(id="c1", name="generate_image", arguments={"prompt": "a cat"})],
            finish_reason="tool_calls",
        ),
        Completion(text="Here is your cat."),
    )

    ui = await runner.run_turn("chat-1", "user-1", "Draw a cat")

    assert len(ui) == 2
    invocation = ui[0].tool_invocations[0]
    assert invocation.state == "result"
    assert invocation.result == {"imageUrl": "https://i.imgur.com/a-cat.png"}
    assert ui[1].content == "Here is your cat."

    # Second model call saw the tool round
    second_messages = runner._client.seen[1]
    assert [m.role for m in second_messages][-2:] == ["assistant", "tool"]

    # Reloaded transcript folds the stored tool turn back into the call
    stored = await _stored_ui(store, "chat-1")
    assert [t.role for t in stored] == ["user", "assistant", "assistant"]
    assert stored[1].tool_invocations[0].state == "result"


async def test_run_turn_unknown_tool_result_is_error_payload(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="t")
    runner = make_runner(
        Completion(tool_calls=[ToolCallRequest(id="c1", name="nope", arguments={})]),
        Completion(text="Sorry"),
    )

    ui = await runner.run_turn("chat-1", "user-1", "Do it")

    assert ui[0].tool_invocations[0].result == {"error": "Unknown tool: nope"}


async def test_run_turn_attaches_reasoning(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="Math")
    runner = make_runner(Completion(text="4", reasoning="2 + 2"))

    ui = await runner.run_turn("chat-1", "user-1", "2+2?", model_id="chat-model-reasoning")

    assert ui[0].reasoning == "2 + 2"
    assert ui[0].content == "4"
    assert runner._client.complete.call_args.args[0] == "chat-model-reasoning"


async def test_run_turn_drops_empty_completion(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="t")
    runner = make_runner(Completion(text=""))

    ui = await runner.run_turn("chat-1", "user-1", "Hello?")

    assert ui == []
    stored = await _stored_ui(store, "chat-1")
    assert [t.role for t in stored] == ["user"]


async def test_tool_loop_stops_at_max_steps(make_runner, store, settings):
    await store.save_chat(id="chat-1", user_id="user-1", title="t")
    looping = [
        Completion(tool_calls=[ToolCallRequest(id=f"c{i}", name="generate_image", arguments={"prompt": "x"})])
        for i in range(settings.max_steps)
    ]
    runner = make_runner(*looping)

    ui = await runner.run_turn("chat-1", "user-1", "Loop")

    assert runner._client.complete.await_count == settings.max_steps
    assert len(ui) == settings.max_steps
    assert all(t.tool_invocations[0].state == "result" for t in ui)


async def test_history_includes_earlier_turns(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="t")
    runner = make_runner(Completion(text="First answer"), Completion(text="Second answer"))

    await runner.run_turn("chat-1", "user-1", "First question")
    await runner.run_turn("chat-1", "user-1", "Second question")

    history = runner._client.seen[1]
    assert [(m.role, m.content) for m in history] == [
        ("user", "First question"),
        ("assistant", "First answer"),
        ("user", "Second question"),
    ]


async def test_model_error_propagates(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="t")
    runner = make_runner(ModelProviderError("boom", status_code=500))

    with pytest.raises(ModelProviderError):
        await runner.run_turn("chat-1", "user-1", "Hi")


async def test_frozen_clock_keeps_tool_turn_after_its_call(make_runner, store):
    await store.save_chat(id="chat-1", user_id="user-1", title="Pics")
    runner = make_runner(
        Completion(tool_calls=[ToolCallRequest(id="c1", name="generate_image", arguments={"prompt": "a dog"})]),
        Completion(text="Done."),
    )
    frozen = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    with patch("chatline.ai.runner._now", return_value=frozen):
        await runner.run_turn("chat-1", "user-1", "Draw a dog")

    records = await store.get_messages_by_chat_id("chat-1")
    assert [r.role for r in records] == ["user", "assistant", "tool", "assistant"]
    stamps = [r.created_at for r in records]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)

    stored = await _stored_ui(store, "chat-1")
    assert stored[1].tool_invocations[0].state == "result"
