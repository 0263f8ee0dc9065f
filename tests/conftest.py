"""
Shared fixtures for the test suite.
"""

from datetime import datetime, timezone
from itertools import count

import pytest

from usage_ledger.storage.models import UsageEvent


@pytest.fixture
def make_event():
    """Factory for usage events with sensible defaults and unique ids."""
    sequence = count(1)

    def _make(
        prompt_tokens=10,
        completion_tokens=5,
        user_id="u1",
        user_name=None,
        timestamp=None,
        model="llama-3.3-70b-versatile",
        persona="p1",
        id=None
    ):
        return UsageEvent(
            id=id or f"evt_{next(sequence)}",
            user_id=user_id,
            user_name=user_name or f"User {user_id.upper()}",
            timestamp=timestamp or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            persona=persona,
        )

    return _make
