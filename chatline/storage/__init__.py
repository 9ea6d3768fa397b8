"""Storage module -- database engine, ORM models and chat store."""

from chatline.storage.database import Database
from chatline.storage.queries import ChatStore, message_from_turn

__all__ = ["ChatStore", "Database", "message_from_turn"]
