"""Shared utility functions for Chatline."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any


def generate_uuid() -> str:
    """Random version-4 UUID string for chat, message and document ids."""
    return str(uuid.uuid4())


def most_recent_user_turn(turns: Sequence[Any]) -> Any | None:
    """Last turn with role ``user``, or None."""
    for turn in reversed(turns):
        if turn.role == "user":
            return turn
    return None


def document_timestamp_by_index(documents: Sequence[Any] | None, index: int) -> datetime:
    """Creation time of the document version at ``index``.

    Falls back to the current time when there are no documents or the
    index is past the last version.
    """
    if not documents or index >= len(documents):
        return datetime.now(UTC)
    return documents[index].created_at
