"""
Data models for storage layer.

Defines the usage event record and its persisted representation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

# Persona recorded when the caller does not name one
DEFAULT_PERSONA = "asisten-umum"

# Persona used when aggregating stored records that carry no persona
UNKNOWN_PERSONA = "unknown"


def format_timestamp(value: datetime) -> str:
    """Encode a timestamp as ISO-8601 UTC with millisecond precision.

    Naive datetimes are taken to already be in UTC.

    Args:
        value: Timestamp to encode

    Returns:
        String such as ``2024-01-01T12:00:00.000Z``
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Decode an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` as well as explicit offsets. Naive values are
    interpreted as UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so timestamps survive a JSON round trip."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one completed chat exchange.

    Append-only: once written, events are never updated or deleted.
    Token counts are non-negative and total_tokens is always the sum of
    prompt and completion tokens.
    """
    id: str
    user_id: str
    user_name: str
    timestamp: datetime
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    persona: str = DEFAULT_PERSONA

    def __post_init__(self):
        """Validate identifiers and token accounting."""
        if not self.id:
            raise ValueError("id is required")
        if not self.user_id:
            raise ValueError("user_id is required")
        for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.total_tokens != self.prompt_tokens + self.completion_tokens:
            raise ValueError(
                f"total_tokens ({self.total_tokens}) must equal prompt_tokens + "
                f"completion_tokens ({self.prompt_tokens + self.completion_tokens})"
            )
        if not isinstance(self.timestamp, datetime):
            raise ValueError("timestamp must be a datetime")
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase record shape used on disk and over HTTP."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "timestamp": format_timestamp(self.timestamp),
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "persona": self.persona,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageEvent":
        """Build an event from a camelCase record.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise ValueError("usage record must be an object")
        missing = [
            key for key in ("id", "userId", "timestamp", "promptTokens", "completionTokens", "totalTokens")
            if key not in data
        ]
        if missing:
            raise ValueError(f"usage record missing fields: {missing}")
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            user_name=str(data.get("userName") or ""),
            timestamp=parse_timestamp(data["timestamp"]),
            model=str(data.get("model") or ""),
            prompt_tokens=data["promptTokens"],
            completion_tokens=data["completionTokens"],
            total_tokens=data["totalTokens"],
            persona=data.get("persona") or UNKNOWN_PERSONA,
        )
