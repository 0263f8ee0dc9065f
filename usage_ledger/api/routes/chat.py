"""Chat endpoint: streams a completion and records its token usage."""

import json
import logging
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ...core.recorder import derive_user_identity
from ...sdk.chat_client import ChatProviderError, ChatStream, TrackedChatClient
from ..dependencies import get_chat_client

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage]
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    persona: Optional[str] = None


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _encode_stream(stream: ChatStream) -> Iterator[str]:
    # One "0:<json string>" line per content delta
    for content in stream:
        yield f"0:{json.dumps(content, ensure_ascii=False)}\n"


@router.post("/chat")
def chat(
    body: ChatRequest,
    request: Request,
    client: Optional[TrackedChatClient] = Depends(get_chat_client),
):
    if client is None:
        logger.error("Chat requested but no LLM API key is configured")
        return JSONResponse(status_code=500, content={"error": "API key not configured"})

    identity = derive_user_identity(_client_ip(request), request.headers.get("user-agent"))
    try:
        stream = client.open_stream(
            messages=[m.model_dump() for m in body.messages],
            system_prompt=body.system_prompt,
            persona=body.persona,
            identity=identity,
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except ChatProviderError as e:
        logger.error("Chat failed (model=%s): %s", e.model, e)
        return JSONResponse(status_code=500, content={"error": str(e)})

    return StreamingResponse(
        _encode_stream(stream),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
