"""
Usage event recording.

Builds one usage event per completed chat exchange and hands it to the
store on a background worker, so the exchange never waits for storage.
"""

import base64
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from ..storage.models import DEFAULT_PERSONA, UsageEvent, truncate_to_millis
from ..storage.repository import UsageStore
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserIdentity:
    """Pseudo-identity of a chat client. Not an authenticated user."""
    user_id: str
    user_name: str


def derive_user_identity(client_ip: Optional[str], user_agent: Optional[str]) -> UserIdentity:
    """Derive a stable pseudo-identity from the client's network fingerprint.

    The same address and user agent always map to the same identity.

    Args:
        client_ip: Client address (first hop of X-Forwarded-For)
        user_agent: Client User-Agent header

    Returns:
        UserIdentity with ``user_<hash>`` id and ``User <HASH>`` label
    """
    ip = (client_ip or "").strip() or "unknown"
    agent = user_agent or "unknown"
    fingerprint = f"{ip}-{agent[:50]}".encode("utf-8")
    digest = base64.b64encode(fingerprint).decode("ascii")[:12]
    return UserIdentity(
        user_id=f"user_{digest}",
        user_name=f"User {digest[:6].upper()}"
    )


def new_event_id() -> str:
    """Millisecond timestamp plus a random suffix, unique under concurrency."""
    return f"{time.time_ns() // 1_000_000}_{uuid4().hex[:12]}"


def build_usage_event(
    prompt_text: str,
    completion_text: str,
    model: str,
    identity: UserIdentity,
    persona: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    default_persona: str = DEFAULT_PERSONA
) -> UsageEvent:
    """Construct the usage event for a completed exchange.

    Token counts are estimated from the texts and the total is always
    computed here, never taken from the caller.

    Args:
        prompt_text: All prompt messages joined together
        completion_text: Full completion text streamed to the caller
        model: Model that actually served the exchange
        identity: Client pseudo-identity
        persona: Persona tag supplied by the caller
        timestamp: Completion instant (defaults to now, UTC)
        default_persona: Tag used when persona is empty

    Returns:
        A new UsageEvent

    Raises:
        ValueError: If model is empty
    """
    if not model or not model.strip():
        raise ValueError("model is required and cannot be empty")

    usage = TokenUsage.from_text(prompt_text, completion_text)
    created = truncate_to_millis(timestamp or datetime.now(timezone.utc))

    return UsageEvent(
        id=new_event_id(),
        user_id=identity.user_id,
        user_name=identity.user_name,
        timestamp=created,
        model=model,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
        persona=persona or default_persona,
    )


class UsageRecorder:
    """Fire-and-forget writer of usage events.

    A single worker thread performs the appends, which keeps them off the
    request path and serializes writes to the file backend. Recording never
    raises into the caller: failures are logged and the event is dropped.
    """

    def __init__(
        self,
        store: UsageStore,
        default_persona: str = DEFAULT_PERSONA,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        self.store = store
        self.default_persona = default_persona
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="usage-recorder")

    def record(self, event: UsageEvent) -> Optional[Future]:
        """Queue an event for storage without waiting for it.

        Returns:
            Future for the append, or None if the recorder is shut down
        """
        try:
            future = self._executor.submit(self.store.append, event)
        except RuntimeError:
            logger.error("Recorder is closed, dropping usage event id=%s", event.id)
            return None
        future.add_done_callback(lambda f: _log_append_failure(f, event, self.store))
        return future

    def record_exchange(
        self,
        prompt_text: str,
        completion_text: str,
        model: str,
        identity: UserIdentity,
        persona: Optional[str] = None
    ) -> Optional[UsageEvent]:
        """Build and queue the usage event for a completed exchange.

        Returns:
            The event that was queued, or None if it could not be built
        """
        try:
            event = build_usage_event(
                prompt_text=prompt_text,
                completion_text=completion_text,
                model=model,
                identity=identity,
                persona=persona,
                default_persona=self.default_persona
            )
        except ValueError:
            logger.exception("Could not build usage event (model=%r user=%s)", model, identity.user_id)
            return None

        self.record(event)
        logger.info(
            "Recorded usage: user=%s model=%s persona=%s tokens=%d",
            event.user_id,
            event.model,
            event.persona,
            event.total_tokens,
        )
        return event

    def close(self, wait: bool = True) -> None:
        """Stop accepting events; by default wait for queued appends."""
        self._executor.shutdown(wait=wait)


def _log_append_failure(future: Future, event: UsageEvent, store: UsageStore) -> None:
    if future.cancelled():
        logger.warning("Usage append cancelled (backend=%s id=%s)", store.backend.value, event.id)
        return
    error = future.exception()
    if error is not None:
        logger.error(
            "Usage append failed (backend=%s id=%s): %s",
            store.backend.value,
            event.id,
            error,
            exc_info=error,
        )
