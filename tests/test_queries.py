"""Tests for ChatStore against a SQLite database.

SQLite hands datetimes back without tzinfo, so timestamps read from the
store are compared after dropping tzinfo from the expected values.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import bcrypt

from chatline.storage.models import Message, Suggestion
from chatline.storage.queries import message_from_turn
from chatline.transcript import TextPart, ToolCallPart, Turn
from chatline.utils import generate_uuid


def _naive(dt: datetime) -> datetime:
    return dt.replace(tzinfo=None)


async def _chat(store, user_id: str = "user-1", title: str = "Test chat") -> str:
    chat_id = generate_uuid()
    await store.save_chat(id=chat_id, user_id=user_id, title=title)
    return chat_id


def _message(chat_id: str, created_at: datetime, content="hello", role: str = "user") -> Message:
    return Message(id=generate_uuid(), chat_id=chat_id, role=role, content=content, created_at=created_at)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def test_create_user_hashes_password(store):
    user = await store.create_user("a@example.com", "hunter2")

    found = await store.get_user("a@example.com")

    assert [u.id for u in found] == [user.id]
    assert found[0].password != "hunter2"
    assert bcrypt.checkpw(b"hunter2", found[0].password.encode())


async def test_get_user_unknown_email(store):
    assert await store.get_user("nobody@example.com") == []


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


async def test_save_and_get_chat(store):
    chat_id = await _chat(store, title="Cats")

    chat = await store.get_chat_by_id(chat_id)

    assert chat.title == "Cats"
    assert chat.user_id == "user-1"
    assert chat.visibility == "private"
    assert await store.get_chat_by_id("missing") is None


async def test_chats_by_user_newest_first(store):
    first = await _chat(store)
    await asyncio.sleep(0.01)
    second = await _chat(store)
    await _chat(store, user_id="someone-else")

    chats = await store.get_chats_by_user_id("user-1")

    assert [c.id for c in chats] == [second, first]


async def test_update_visibility(store):
    chat_id = await _chat(store)

    await store.update_chat_visibility_by_id(chat_id, "public")

    assert (await store.get_chat_by_id(chat_id)).visibility == "public"


async def test_delete_chat_removes_messages_and_votes(store):
    chat_id = await _chat(store)
    message = _message(chat_id, datetime.now(UTC))
    await store.save_messages([message])
    await store.vote_message(chat_id, message.id, "up")

    await store.delete_chat_by_id(chat_id)

    assert await store.get_chat_by_id(chat_id) is None
    assert await store.get_messages_by_chat_id(chat_id) == []
    assert await store.get_votes_by_chat_id(chat_id) == []


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def test_messages_oldest_first(store):
    chat_id = await _chat(store)
    now = datetime.now(UTC)
    late = _message(chat_id, now + timedelta(seconds=2), "second")
    early = _message(chat_id, now, "first")
    await store.save_messages([late, early])

    messages = await store.get_messages_by_chat_id(chat_id)

    assert [m.content for m in messages] == ["first", "second"]


async def test_structured_content_round_trips_with_camel_case(store):
    chat_id = await _chat(store)
    turn = Turn(
        id=generate_uuid(),
        role="assistant",
        content=[TextPart(text="Drawing"), ToolCallPart(tool_call_id="c1", tool_name="generate_image")],
    )
    await store.save_messages([message_from_turn(chat_id, turn)])

    [message] = await store.get_message_by_id(turn.id)

    assert message.content == [
        {"type": "text", "text": "Drawing"},
        {"type": "tool-call", "toolCallId": "c1", "toolName": "generate_image", "args": {}},
    ]


async def test_message_from_turn_keeps_string_content():
    turn = Turn(id="m1", role="user", content="Hi")
    message = message_from_turn("chat-1", turn)
    assert message.content == "Hi"
    assert message.chat_id == "chat-1"
    assert message.created_at is not None


async def test_save_messages_empty_is_noop(store):
    await store.save_messages([])


async def test_delete_trailing_messages(store):
    chat_id = await _chat(store)
    now = datetime.now(UTC)
    kept = _message(chat_id, now - timedelta(minutes=1), "kept")
    pivot = _message(chat_id, now, "pivot")
    after = _message(chat_id, now + timedelta(minutes=1), "after")
    await store.save_messages([kept, pivot, after])
    await store.vote_message(chat_id, after.id, "down")

    deleted = await store.delete_messages_by_chat_id_after_timestamp(chat_id, now)

    assert deleted == 2
    assert [m.content for m in await store.get_messages_by_chat_id(chat_id)] == ["kept"]
    assert await store.get_votes_by_chat_id(chat_id) == []


async def test_delete_trailing_messages_none_match(store):
    chat_id = await _chat(store)
    await store.save_messages([_message(chat_id, datetime.now(UTC))])

    deleted = await store.delete_messages_by_chat_id_after_timestamp(
        chat_id, datetime.now(UTC) + timedelta(hours=1)
    )

    assert deleted == 0


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


async def test_vote_replaces_earlier_vote(store):
    chat_id = await _chat(store)
    message = _message(chat_id, datetime.now(UTC))
    await store.save_messages([message])

    await store.vote_message(chat_id, message.id, "up")
    await store.vote_message(chat_id, message.id, "down")

    votes = await store.get_votes_by_chat_id(chat_id)
    assert len(votes) == 1
    assert votes[0].is_upvoted is False


# ---------------------------------------------------------------------------
# Documents and suggestions
# ---------------------------------------------------------------------------


async def test_document_versions(store):
    doc_id = generate_uuid()
    first = await store.save_document(doc_id, "Essay", "text", "v1", "user-1")
    await asyncio.sleep(0.01)
    await store.save_document(doc_id, "Essay", "text", "v2", "user-1")

    versions = await store.get_documents_by_id(doc_id)
    latest = await store.get_document_by_id(doc_id)

    assert [d.content for d in versions] == ["v1", "v2"]
    assert latest.content == "v2"
    assert _naive(versions[0].created_at) == _naive(first.created_at)


async def test_get_document_missing(store):
    assert await store.get_document_by_id("missing") is None
    assert await store.get_documents_by_id("missing") == []


async def test_delete_documents_after_timestamp_drops_later_versions_and_suggestions(store):
    doc_id = generate_uuid()
    first = await store.save_document(doc_id, "Essay", "text", "v1", "user-1")
    await asyncio.sleep(0.01)
    second = await store.save_document(doc_id, "Essay", "text", "v2", "user-1")
    await store.save_suggestions([
        Suggestion(
            id=generate_uuid(),
            document_id=doc_id,
            document_created_at=second.created_at,
            original_text="v2",
            suggested_text="v2, improved",
            user_id="user-1",
            created_at=datetime.now(UTC),
        )
    ])

    deleted = await store.delete_documents_by_id_after_timestamp(doc_id, first.created_at)

    assert deleted == 1
    assert [d.content for d in await store.get_documents_by_id(doc_id)] == ["v1"]
    assert await store.get_suggestions_by_document_id(doc_id) == []


async def test_suggestions_by_document(store):
    doc_id = generate_uuid()
    document = await store.save_document(doc_id, "Code", "code", "print(1)", "user-1")
    await store.save_suggestions([
        Suggestion(
            id=generate_uuid(),
            document_id=doc_id,
            document_created_at=document.created_at,
            original_text="print(1)",
            suggested_text="print(2)",
            description="bump",
            user_id="user-1",
            created_at=datetime.now(UTC),
        )
    ])

    [suggestion] = await store.get_suggestions_by_document_id(doc_id)

    assert suggestion.suggested_text == "print(2)"
    assert suggestion.is_resolved is False


async def test_messages_with_equal_timestamps_keep_batch_order(store):
    chat_id = await _chat(store)
    same = datetime.now(UTC)
    batch = [
        _message(chat_id, same, "assistant call", role="assistant"),
        _message(chat_id, same, "tool result", role="tool"),
        _message(chat_id, same, "assistant answer", role="assistant"),
    ]
    await store.save_messages(batch)

    messages = await store.get_messages_by_chat_id(chat_id)

    assert [m.content for m in messages] == ["assistant call", "tool result", "assistant answer"]
    assert [m.position for m in messages] == [0, 1, 2]
