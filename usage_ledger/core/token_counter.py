"""
Token counting and usage tracking.

Estimates token counts from raw text for usage accounting.
"""

import math
from dataclasses import dataclass

# Rough average for most languages and tokenizers
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text as ceil(characters / 4).

    This is an approximation, not a model-accurate tokenization.

    Args:
        text: Text sent to or received from the model

    Returns:
        Non-negative estimated token count
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for one exchange.

    The total is derived, so it can never disagree with its parts.
    """
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens cannot be negative")
        if self.completion_tokens < 0:
            raise ValueError("completion_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_text(cls, prompt_text: str, completion_text: str) -> "TokenUsage":
        """Estimate usage from the full prompt and completion texts."""
        return cls(
            prompt_tokens=estimate_tokens(prompt_text),
            completion_tokens=estimate_tokens(completion_text)
        )
