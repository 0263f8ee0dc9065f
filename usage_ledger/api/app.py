"""
HTTP service for usage-ledger.

Serves the admin token-usage views, the schema initialization endpoints
and the tracked chat endpoint.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..config.loader import Settings, load_settings
from ..core.recorder import UsageRecorder
from ..sdk.chat_client import TrackedChatClient
from ..storage.repository import StorageError, UsageStore, create_store
from .routes import admin, chat

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[UsageStore] = None,
    recorder: Optional[UsageRecorder] = None,
    chat_client: Optional[TrackedChatClient] = None
) -> FastAPI:
    """Build the FastAPI application.

    The storage backend is chosen once here and shared by every request.
    The chat endpoint is enabled only when an LLM API key is configured or
    a chat client is passed in.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        store: Usage store (built from settings if omitted)
        recorder: Usage recorder (built around the store if omitted)
        chat_client: Chat client (built from settings if an API key is set)

    Returns:
        Configured FastAPI instance
    """
    settings = settings or load_settings()
    store = store or create_store(settings)
    recorder = recorder or UsageRecorder(store, default_persona=settings.recorder.default_persona)
    if chat_client is None and settings.llm.api_key:
        chat_client = TrackedChatClient.from_settings(settings, recorder)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            store.initialize()
        except StorageError as e:
            logger.error("Usage store not initialized at startup: %s", e)
        yield
        recorder.close()

    app = FastAPI(title="usage-ledger", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.recorder = recorder
    app.state.chat_client = chat_client

    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(admin.setup_router, prefix="/api", tags=["setup"])
    app.include_router(chat.router, prefix="/api", tags=["chat"])

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok", "backend": store.backend.value}

    return app
