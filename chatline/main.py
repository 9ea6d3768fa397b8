"""Chatline entry point.

Initializes all components and starts the server:
  Settings -> Database -> ChatStore -> ModelRegistry -> ModelClient
  -> ToolDispatcher (+ image tool) -> ChatRunner -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from chatline.ai.client import ModelClient
from chatline.ai.image_tool import register_image_tool
from chatline.ai.models import ModelRegistry
from chatline.ai.runner import ChatRunner
from chatline.ai.tools import ToolDispatcher
from chatline.config import Settings
from chatline.storage.database import Database
from chatline.storage.queries import ChatStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings, registry: ModelRegistry) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.
    """
    database = Database(settings)
    await database.connect()
    await database.create_schema()

    store = ChatStore(database)

    client = ModelClient(settings, registry)
    await client.start()

    # Tools get their own client: no provider auth headers
    tool_http = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
    dispatcher = ToolDispatcher()
    register_image_tool(dispatcher, settings, tool_http)

    runner = ChatRunner(store, client, dispatcher, settings)

    return {
        "database": database,
        "store": store,
        "client": client,
        "tool_http": tool_http,
        "dispatcher": dispatcher,
        "runner": runner,
    }


async def shutdown_components(components: dict) -> None:
    """Close components in reverse dependency order."""
    client = components.get("client")
    if client:
        await client.close()
    tool_http = components.get("tool_http")
    if tool_http:
        await tool_http.aclose()
    database = components.get("database")
    if database:
        await database.disconnect()


class _LazyProxy:
    """Proxy that defers attribute access to a dict-backed component.

    Allows create_app() to receive component references before lifespan
    has initialized them.
    """

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized -- lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)


def build_app(settings: Settings) -> Starlette:
    """Build the ASGI app; components start inside the lifespan."""
    components: dict = {}
    registry = ModelRegistry.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings, registry))
        logger.info("Components initialized (max_steps=%d)", settings.max_steps)
        yield
        await shutdown_components(components)

    from chatline.api.rest import create_app

    return create_app(
        runner=_LazyProxy(components, "runner"),
        store=_LazyProxy(components, "store"),
        registry=registry,
        database=_LazyProxy(components, "database"),
        settings=settings,
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Chatline on %s:%d", settings.host, settings.port)
    if not settings.groq_api_key:
        logger.warning("GROQ_API_KEY not set -- /api/chat will fail")
    if not settings.fal_key or not settings.imgur_client_id:
        logger.warning("FAL_KEY or IMGUR_CLIENT_ID not set -- generate_image will fail")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
