"""Chat store -- queries for users, chats, messages, votes and documents.

Every operation runs in its own session. Database errors are logged with
the failing operation and re-raised to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Literal

import bcrypt
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from chatline.storage.database import Database
from chatline.storage.models import Chat, Document, Message, Suggestion, User, Vote
from chatline.transcript.schemas import Turn
from chatline.utils import generate_uuid

logger = logging.getLogger(__name__)

VisibilityType = Literal["private", "public"]
VoteType = Literal["up", "down"]
ArtifactKind = Literal["text", "code", "image", "sheet"]


def message_from_turn(chat_id: str, turn: Turn) -> Message:
    """Build a message row from a turn, keeping AI SDK key names in content."""
    if isinstance(turn.content, str):
        content: Any = turn.content
    else:
        content = [part.to_wire() for part in turn.content]
    return Message(
        id=turn.id,
        chat_id=chat_id,
        role=turn.role,
        content=content,
        created_at=turn.created_at or datetime.now(UTC),
    )


class ChatStore:
    """Persistence operations backing the chat application."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, email: str) -> list[User]:
        try:
            async with self._db.session() as session:
                result = await session.execute(select(User).where(User.email == email))
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get user from database")
            raise

    async def create_user(self, email: str, password: str) -> User:
        """Create a user with a bcrypt-hashed password."""
        hashed = bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode()
        try:
            async with self._db.session() as session:
                user = User(id=generate_uuid(), email=email, password=hashed)
                session.add(user)
                await session.commit()
                logger.info("Created user %s", user.id[:8])
                return user
        except SQLAlchemyError:
            logger.exception("Failed to create user in database")
            raise

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def save_chat(self, id: str, user_id: str, title: str) -> Chat:
        try:
            async with self._db.session() as session:
                chat = Chat(id=id, created_at=datetime.now(UTC), user_id=user_id, title=title)
                session.add(chat)
                await session.commit()
                logger.info("Saved chat %s: %s", id[:8], title[:80])
                return chat
        except SQLAlchemyError:
            logger.exception("Failed to save chat in database")
            raise

    async def delete_chat_by_id(self, id: str) -> None:
        """Delete a chat with its votes and messages in one transaction."""
        try:
            async with self._db.session() as session:
                async with session.begin():
                    await session.execute(delete(Vote).where(Vote.chat_id == id))
                    await session.execute(delete(Message).where(Message.chat_id == id))
                    await session.execute(delete(Chat).where(Chat.id == id))
            logger.info("Deleted chat %s", id[:8])
        except SQLAlchemyError:
            logger.exception("Failed to delete chat by id from database")
            raise

    async def get_chats_by_user_id(self, id: str) -> list[Chat]:
        """Chats owned by a user, newest first."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Chat).where(Chat.user_id == id).order_by(Chat.created_at.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get chats by user from database")
            raise

    async def get_chat_by_id(self, id: str) -> Chat | None:
        try:
            async with self._db.session() as session:
                return await session.get(Chat, id)
        except SQLAlchemyError:
            logger.exception("Failed to get chat by id from database")
            raise

    async def update_chat_visibility_by_id(self, chat_id: str, visibility: VisibilityType) -> None:
        try:
            async with self._db.session() as session:
                await session.execute(
                    update(Chat).where(Chat.id == chat_id).values(visibility=visibility)
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to update chat visibility in database")
            raise

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_messages(self, messages: Sequence[Message]) -> None:
        if not messages:
            return
        try:
            async with self._db.session() as session:
                for position, message in enumerate(messages):
                    message.position = position
                session.add_all(messages)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to save messages in database")
            raise

    async def get_messages_by_chat_id(self, id: str) -> list[Message]:
        """Messages of a chat, oldest first."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Message)
                    .where(Message.chat_id == id)
                    .order_by(Message.created_at.asc(), Message.position.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get messages by chat id from database")
            raise

    async def get_message_by_id(self, id: str) -> list[Message]:
        try:
            async with self._db.session() as session:
                result = await session.execute(select(Message).where(Message.id == id))
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get message by id from database")
            raise

    async def delete_messages_by_chat_id_after_timestamp(self, chat_id: str, timestamp: datetime) -> int:
        """Delete messages created at or after ``timestamp``, with their votes.

        Returns the number of deleted messages.
        """
        try:
            async with self._db.session() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Message.id)
                        .where(Message.chat_id == chat_id)
                        .where(Message.created_at >= timestamp)
                    )
                    message_ids = list(result.scalars().all())
                    if not message_ids:
                        return 0

                    await session.execute(
                        delete(Vote)
                        .where(Vote.chat_id == chat_id)
                        .where(Vote.message_id.in_(message_ids))
                    )
                    await session.execute(
                        delete(Message)
                        .where(Message.chat_id == chat_id)
                        .where(Message.id.in_(message_ids))
                    )
            logger.info("Deleted %d trailing messages from chat %s", len(message_ids), chat_id[:8])
            return len(message_ids)
        except SQLAlchemyError:
            logger.exception("Failed to delete messages by id after timestamp from database")
            raise

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def vote_message(self, chat_id: str, message_id: str, type: VoteType) -> Vote:
        """Record an up/down vote, replacing any earlier vote on the message."""
        try:
            async with self._db.session() as session:
                vote = await session.get(Vote, (chat_id, message_id))
                if vote is None:
                    vote = Vote(chat_id=chat_id, message_id=message_id, is_upvoted=type == "up")
                    session.add(vote)
                else:
                    vote.is_upvoted = type == "up"
                await session.commit()
                return vote
        except SQLAlchemyError:
            logger.exception("Failed to upvote message in database")
            raise

    async def get_votes_by_chat_id(self, id: str) -> list[Vote]:
        try:
            async with self._db.session() as session:
                result = await session.execute(select(Vote).where(Vote.chat_id == id))
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get votes by chat id from database")
            raise

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def save_document(
        self,
        id: str,
        title: str,
        kind: ArtifactKind,
        content: str,
        user_id: str,
    ) -> Document:
        """Save a new version of a document."""
        try:
            async with self._db.session() as session:
                document = Document(
                    id=id,
                    title=title,
                    kind=kind,
                    content=content,
                    user_id=user_id,
                    created_at=datetime.now(UTC),
                )
                session.add(document)
                await session.commit()
                return document
        except SQLAlchemyError:
            logger.exception("Failed to save document in database")
            raise

    async def get_documents_by_id(self, id: str) -> list[Document]:
        """All versions of a document, oldest first."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Document).where(Document.id == id).order_by(Document.created_at.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get document by id from database")
            raise

    async def get_document_by_id(self, id: str) -> Document | None:
        """Latest version of a document."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Document)
                    .where(Document.id == id)
                    .order_by(Document.created_at.desc())
                    .limit(1)
                )
                return result.scalars().first()
        except SQLAlchemyError:
            logger.exception("Failed to get document by id from database")
            raise

    async def delete_documents_by_id_after_timestamp(self, id: str, timestamp: datetime) -> int:
        """Delete versions created after ``timestamp`` and their suggestions.

        Returns the number of deleted versions.
        """
        try:
            async with self._db.session() as session:
                async with session.begin():
                    await session.execute(
                        delete(Suggestion)
                        .where(Suggestion.document_id == id)
                        .where(Suggestion.document_created_at > timestamp)
                    )
                    result = await session.execute(
                        delete(Document)
                        .where(Document.id == id)
                        .where(Document.created_at > timestamp)
                    )
            return result.rowcount
        except SQLAlchemyError:
            logger.exception("Failed to delete documents by id after timestamp from database")
            raise

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def save_suggestions(self, suggestions: Sequence[Suggestion]) -> None:
        if not suggestions:
            return
        try:
            async with self._db.session() as session:
                session.add_all(suggestions)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to save suggestions in database")
            raise

    async def get_suggestions_by_document_id(self, document_id: str) -> list[Suggestion]:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Suggestion).where(Suggestion.document_id == document_id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to get suggestions by document version from database")
            raise
