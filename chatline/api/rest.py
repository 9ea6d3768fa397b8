"""REST API for Chatline.

Endpoints:
  GET    /health                      - Health check (DB connectivity)
  GET    /api/models                  - Chat model catalog
  GET    /api/chats/{id}              - Chat page data (reconciled transcript)
  PATCH  /api/chats/{id}/visibility   - Change chat visibility
  POST   /api/chat                    - Send a message, get the new turns
  DELETE /api/chat?id=                - Delete a chat
  GET    /api/history                 - Viewer's chats, newest first
  GET    /api/vote?chatId=            - Votes of a chat
  PATCH  /api/vote                    - Up/down vote a message
  GET    /api/document?id=            - All versions of a document
  POST   /api/document?id=            - Save a new document version
  PATCH  /api/document?id=            - Delete versions after a timestamp
  GET    /api/suggestions?documentId= - Suggestions for a document
  DELETE /api/messages/{id}/trailing  - Delete a message and all after it

The viewer is identified by the ``x-user-id`` header set by the identity
provider in front of this service.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from chatline.ai.models import CHAT_MODELS, DEFAULT_CHAT_MODEL, ModelRegistry
from chatline.ai.runner import ChatRunner
from chatline.config import Settings
from chatline.storage.database import Database
from chatline.storage.models import Chat, Document, Suggestion, Vote
from chatline.storage.queries import ArtifactKind, ChatStore, VisibilityType, VoteType
from chatline.transcript import StoredTurn, to_ui_view
from chatline.utils import document_timestamp_by_index, most_recent_user_turn

logger = logging.getLogger(__name__)

USER_HEADER = "x-user-id"
MODEL_COOKIE = "chat-model"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ChatRequestMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """A single ``message``, or the client's ``messages`` list whose last user turn is sent."""

    id: str
    message: str | None = Field(None, min_length=1)
    messages: list[ChatRequestMessage] = Field(default_factory=list)
    selected_chat_model: str = Field(DEFAULT_CHAT_MODEL, alias="selectedChatModel")

    @model_validator(mode="after")
    def _pick_user_message(self) -> ChatRequest:
        if self.message is None:
            turn = most_recent_user_turn(self.messages)
            if turn is None or not turn.content:
                raise ValueError("No user message found")
            self.message = turn.content
        return self


class VoteRequest(BaseModel):
    chat_id: str = Field(alias="chatId")
    message_id: str = Field(alias="messageId")
    type: VoteType


class VisibilityRequest(BaseModel):
    visibility: VisibilityType


class DocumentRequest(BaseModel):
    title: str
    content: str
    kind: ArtifactKind = "text"


class DocumentTrimRequest(BaseModel):
    """Trim point: an explicit ``timestamp`` or the ``index`` of a version."""

    timestamp: datetime | None = None
    index: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _require_one(self) -> DocumentTrimRequest:
        if (self.timestamp is None) == (self.index is None):
            raise ValueError("Provide exactly one of timestamp or index")
        return self


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _chat_dict(chat: Chat) -> dict[str, Any]:
    return {
        "id": chat.id,
        "createdAt": _iso(chat.created_at),
        "title": chat.title,
        "userId": chat.user_id,
        "visibility": chat.visibility,
    }


def _vote_dict(vote: Vote) -> dict[str, Any]:
    return {"chatId": vote.chat_id, "messageId": vote.message_id, "isUpvoted": vote.is_upvoted}


def _document_dict(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "createdAt": _iso(document.created_at),
        "title": document.title,
        "content": document.content,
        "kind": document.kind,
        "userId": document.user_id,
    }


def _suggestion_dict(suggestion: Suggestion) -> dict[str, Any]:
    return {
        "id": suggestion.id,
        "documentId": suggestion.document_id,
        "documentCreatedAt": _iso(suggestion.document_created_at),
        "originalText": suggestion.original_text,
        "suggestedText": suggestion.suggested_text,
        "description": suggestion.description,
        "isResolved": suggestion.is_resolved,
        "userId": suggestion.user_id,
        "createdAt": _iso(suggestion.created_at),
    }


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
    """Validate a JSON body; returns the model or a 400 response."""
    try:
        body = await request.json()
    except ValueError:
        return _error("Invalid JSON body", 400)
    try:
        return model.model_validate(body)
    except ValidationError as e:
        return _error(f"Invalid request: {e.errors(include_url=False)}", 400)


def create_app(
    runner: ChatRunner,
    store: ChatStore,
    registry: ModelRegistry,
    database: Database,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    def viewer(request: Request) -> str | None:
        return request.headers.get(USER_HEADER) or None

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def get_chat(request: Request) -> JSONResponse:
        """GET /api/chats/{id} - Chat with its reconciled transcript."""
        chat_id = request.path_params["id"]
        chat = await store.get_chat_by_id(chat_id)
        if chat is None:
            return _error("Not found", 404)

        user_id = viewer(request)
        is_owner = user_id is not None and user_id == chat.user_id
        if not is_owner and chat.visibility == "private":
            return _error("Not found", 404)

        records = await store.get_messages_by_chat_id(chat_id)
        ui_turns = to_ui_view([StoredTurn.from_record(r) for r in records])

        selected = request.cookies.get(MODEL_COOKIE)
        if not selected or not registry.is_chat_model(selected):
            selected = DEFAULT_CHAT_MODEL

        return JSONResponse({
            "chat": _chat_dict(chat),
            "messages": [t.to_wire() for t in ui_turns],
            "selectedChatModel": selected,
            "selectedVisibilityType": "private" if chat.visibility == "private" else "public",
            "isReadonly": not is_owner,
        })

    async def update_visibility(request: Request) -> JSONResponse:
        """PATCH /api/chats/{id}/visibility"""
        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        parsed = await _parse_body(request, VisibilityRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        chat_id = request.path_params["id"]
        chat = await store.get_chat_by_id(chat_id)
        if chat is None:
            return _error("Not found", 404)
        if chat.user_id != user_id:
            return _error("Forbidden", 403)

        await store.update_chat_visibility_by_id(chat_id, parsed.visibility)
        return JSONResponse({"id": chat_id, "visibility": parsed.visibility})

    async def post_chat(request: Request) -> JSONResponse:
        """POST /api/chat - Run one chat turn."""
        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        parsed = await _parse_body(request, ChatRequest)
        if isinstance(parsed, JSONResponse):
            return parsed
        if not registry.is_chat_model(parsed.selected_chat_model):
            return _error(f"Unknown model: {parsed.selected_chat_model}", 400)

        chat = await store.get_chat_by_id(parsed.id)
        if chat is not None and chat.user_id != user_id:
            return _error("Forbidden", 403)

        try:
            turns = await runner.run_turn(
                parsed.id, user_id, parsed.message, model_id=parsed.selected_chat_model
            )
        except Exception as e:
            logger.error("Chat error: %s", e)
            return _error(str(e), 500)

        return JSONResponse({"id": parsed.id, "messages": [t.to_wire() for t in turns]})

    async def delete_chat(request: Request) -> JSONResponse:
        """DELETE /api/chat?id= - Delete a chat owned by the viewer."""
        chat_id = request.query_params.get("id")
        if not chat_id:
            return _error("Missing required parameter: id", 400)

        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        chat = await store.get_chat_by_id(chat_id)
        if chat is None:
            return _error("Not found", 404)
        if chat.user_id != user_id:
            return _error("Unauthorized", 401)

        await store.delete_chat_by_id(chat_id)
        return JSONResponse({"deleted": chat_id})

    async def history(request: Request) -> JSONResponse:
        """GET /api/history"""
        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)
        chats = await store.get_chats_by_user_id(user_id)
        return JSONResponse([_chat_dict(c) for c in chats])

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def get_votes(request: Request) -> JSONResponse:
        """GET /api/vote?chatId="""
        chat_id = request.query_params.get("chatId")
        if not chat_id:
            return _error("Missing required parameter: chatId", 400)

        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        chat = await store.get_chat_by_id(chat_id)
        if chat is None:
            return _error("Not found", 404)
        if chat.user_id != user_id:
            return _error("Unauthorized", 401)

        votes = await store.get_votes_by_chat_id(chat_id)
        return JSONResponse([_vote_dict(v) for v in votes])

    async def vote(request: Request) -> JSONResponse:
        """PATCH /api/vote"""
        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        parsed = await _parse_body(request, VoteRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        chat = await store.get_chat_by_id(parsed.chat_id)
        if chat is None:
            return _error("Not found", 404)
        if chat.user_id != user_id:
            return _error("Unauthorized", 401)

        saved = await store.vote_message(parsed.chat_id, parsed.message_id, parsed.type)
        return JSONResponse(_vote_dict(saved))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def document(request: Request) -> JSONResponse:
        """GET|POST|PATCH /api/document?id="""
        document_id = request.query_params.get("id")
        if not document_id:
            return _error("Missing required parameter: id", 400)

        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        if request.method == "POST":
            parsed = await _parse_body(request, DocumentRequest)
            if isinstance(parsed, JSONResponse):
                return parsed
            saved = await store.save_document(
                id=document_id,
                title=parsed.title,
                kind=parsed.kind,
                content=parsed.content,
                user_id=user_id,
            )
            return JSONResponse(_document_dict(saved))

        documents = await store.get_documents_by_id(document_id)
        if not documents:
            return _error("Not found", 404)
        if documents[0].user_id != user_id:
            return _error("Unauthorized", 401)

        if request.method == "PATCH":
            parsed = await _parse_body(request, DocumentTrimRequest)
            if isinstance(parsed, JSONResponse):
                return parsed
            if parsed.index is not None:
                timestamp = document_timestamp_by_index(documents, parsed.index)
            else:
                timestamp = parsed.timestamp
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=UTC)
            deleted = await store.delete_documents_by_id_after_timestamp(document_id, timestamp)
            return JSONResponse({"deleted": deleted})

        return JSONResponse([_document_dict(d) for d in documents])

    async def suggestions(request: Request) -> JSONResponse:
        """GET /api/suggestions?documentId="""
        document_id = request.query_params.get("documentId")
        if not document_id:
            return _error("Missing required parameter: documentId", 400)

        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        found = await store.get_suggestions_by_document_id(document_id)
        if found and found[0].user_id != user_id:
            return _error("Unauthorized", 401)
        return JSONResponse([_suggestion_dict(s) for s in found])

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def delete_trailing(request: Request) -> JSONResponse:
        """DELETE /api/messages/{id}/trailing"""
        user_id = viewer(request)
        if not user_id:
            return _error("Unauthorized", 401)

        found = await store.get_message_by_id(request.path_params["id"])
        if not found:
            return _error("Not found", 404)
        message = found[0]

        chat = await store.get_chat_by_id(message.chat_id)
        if chat is None or chat.user_id != user_id:
            return _error("Forbidden", 403)

        deleted = await store.delete_messages_by_chat_id_after_timestamp(
            message.chat_id, message.created_at
        )
        return JSONResponse({"deleted": deleted})

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def models(request: Request) -> JSONResponse:
        """GET /api/models"""
        return JSONResponse({
            "default": DEFAULT_CHAT_MODEL,
            "models": [
                {"id": m.id, "name": m.name, "description": m.description}
                for m in CHAT_MODELS
            ],
        })

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check with DB connectivity."""
        try:
            await database.connect()
            return JSONResponse({"status": "healthy", "database": "connected"})
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return JSONResponse(
                {"status": "unhealthy", "database": f"error: {e}"},
                status_code=503,
            )

    routes = [
        Route("/health", health),
        Route("/api/models", models),
        Route("/api/chats/{id}", get_chat),
        Route("/api/chats/{id}/visibility", update_visibility, methods=["PATCH"]),
        Route("/api/chat", post_chat, methods=["POST"]),
        Route("/api/chat", delete_chat, methods=["DELETE"]),
        Route("/api/history", history),
        Route("/api/vote", get_votes, methods=["GET"]),
        Route("/api/vote", vote, methods=["PATCH"]),
        Route("/api/document", document, methods=["GET", "POST", "PATCH"]),
        Route("/api/suggestions", suggestions),
        Route("/api/messages/{id}/trailing", delete_trailing, methods=["DELETE"]),
    ]

    return Starlette(routes=routes, lifespan=lifespan)
