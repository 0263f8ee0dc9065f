"""FastAPI dependencies resolving the per-process collaborators."""

from typing import Optional

from fastapi import Request

from ..sdk.chat_client import TrackedChatClient
from ..storage.repository import UsageStore


def get_store(request: Request) -> UsageStore:
    return request.app.state.store


def get_chat_client(request: Request) -> Optional[TrackedChatClient]:
    return request.app.state.chat_client
