"""
Tracked chat client.

Streams chat completions from an OpenAI-compatible provider, falling back
across models, and records one usage event once a stream completes.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from openai import APIStatusError, OpenAI, OpenAIError

from ..config.loader import DEFAULT_LLM_BASE_URL, DEFAULT_MODELS, Settings
from ..core.recorder import UsageRecorder, UserIdentity, derive_user_identity

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 503)
RETRYABLE_MARKERS = ("429", "503", "rate", "limit", "overloaded")


class ChatProviderError(Exception):
    """Raised when no model could serve a chat request."""
    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


def is_retryable_error(error: Exception) -> bool:
    """Whether a provider error should move on to the next model."""
    if isinstance(error, APIStatusError) and error.status_code in RETRYABLE_STATUS_CODES:
        return True
    text = str(error).lower()
    return any(marker in text for marker in RETRYABLE_MARKERS)


def _delta_content(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    return getattr(delta, "content", None) or ""


class ChatStream:
    """A streamed completion bound to the model that accepted the request.

    Iterating yields content deltas. When the provider stream ends, the
    exchange is handed to the recorder exactly once; a stream that fails
    midway records nothing.
    """

    def __init__(
        self,
        stream: Any,
        model: str,
        prompt_text: str,
        recorder: Optional[UsageRecorder],
        identity: UserIdentity,
        persona: Optional[str] = None
    ):
        self.model = model
        self.prompt_text = prompt_text
        self.identity = identity
        self.persona = persona
        self._stream = stream
        self._recorder = recorder
        self._parts: List[str] = []
        self._recorded = False

    @property
    def completion_text(self) -> str:
        """Text streamed so far."""
        return "".join(self._parts)

    def __iter__(self) -> Iterator[str]:
        if self._recorded:
            return
        for chunk in self._stream:
            content = _delta_content(chunk)
            if content:
                self._parts.append(content)
                yield content
        self._finish()

    def _finish(self) -> None:
        if self._recorded:
            return
        self._recorded = True
        if self._recorder is None:
            return
        self._recorder.record_exchange(
            prompt_text=self.prompt_text,
            completion_text=self.completion_text,
            model=self.model,
            identity=self.identity,
            persona=self.persona
        )


class TrackedChatClient:
    """OpenAI-compatible chat client that records token usage.

    Models are tried in priority order; rate limiting and overload errors
    fall through to the next model, anything else fails immediately.
    """

    def __init__(
        self,
        recorder: Optional[UsageRecorder],
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_LLM_BASE_URL,
        models: Sequence[str] = DEFAULT_MODELS,
        client: Optional[Any] = None
    ):
        """Initialize the client.

        Args:
            recorder: Recorder for completed exchanges (None disables recording)
            api_key: Provider API key
            base_url: OpenAI-compatible endpoint
            models: Model ids in priority order
            client: Pre-built OpenAI client (mainly for tests)

        Raises:
            ValueError: If no models are given
        """
        if not models:
            raise ValueError("models is required and cannot be empty")
        self.recorder = recorder
        self.models = tuple(models)
        self.client = client or OpenAI(api_key=api_key, base_url=base_url)

    @classmethod
    def from_settings(cls, settings: Settings, recorder: Optional[UsageRecorder]) -> "TrackedChatClient":
        return cls(
            recorder=recorder,
            api_key=settings.llm.api_key,
            base_url=settings.llm.base_url,
            models=settings.llm.models
        )

    def open_stream(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        persona: Optional[str] = None,
        identity: Optional[UserIdentity] = None
    ) -> ChatStream:
        """Start a streamed completion, falling back across models.

        Args:
            messages: Conversation messages (required)
            system_prompt: Persona system prompt prepended to the messages
            persona: Persona tag recorded with the usage event
            identity: Client pseudo-identity (defaults to an unknown client)

        Returns:
            ChatStream for the first model that accepted the request

        Raises:
            ValueError: If messages is empty
            ChatProviderError: If the request fails on every eligible model
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        conversation = list(messages)
        if system_prompt:
            conversation.insert(0, {"role": "system", "content": system_prompt})
        prompt_text = " ".join(str(m.get("content") or "") for m in conversation)

        last_error: Optional[Exception] = None
        for index, model in enumerate(self.models):
            logger.info("Trying model %d/%d: %s", index + 1, len(self.models), model)
            try:
                stream = self.client.chat.completions.create(
                    model=model,
                    messages=conversation,
                    stream=True
                )
            except OpenAIError as e:
                logger.warning("Model %s failed: %s", model, e)
                last_error = e
                if is_retryable_error(e):
                    logger.info("Retryable error, trying next model")
                    continue
                raise ChatProviderError(str(e), model=model) from e

            logger.info("Model %s accepted the request", model)
            return ChatStream(
                stream=stream,
                model=model,
                prompt_text=prompt_text,
                recorder=self.recorder,
                identity=identity or derive_user_identity(None, None),
                persona=persona
            )

        raise ChatProviderError(f"All models exhausted: {last_error}", model=self.models[-1]) from last_error
