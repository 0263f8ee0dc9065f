# usage_ledger/demo/seed_demo_data.py

import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from usage_ledger.config.loader import DEFAULT_MODELS
from usage_ledger.core.recorder import build_usage_event, derive_user_identity
from usage_ledger.storage.repository import UsageStore
from usage_ledger.storage.models import UsageEvent

DEMO_PERSONAS = ["asisten-umum", "ahli-koding", "penulis-pro", "kustom"]

DEMO_CLIENTS = [
    ("203.0.113.10", "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"),
    ("203.0.113.24", "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)"),
    ("198.51.100.7", "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)"),
    ("198.51.100.42", "Mozilla/5.0 (X11; Linux x86_64)"),
]


def seed_demo_events(
    store: UsageStore,
    count: int = 50,
    days: int = 14,
    seed: Optional[int] = None,
    now: Optional[datetime] = None
) -> List[UsageEvent]:
    """Append synthetic chat exchanges spread over the last ``days`` days.

    The store is initialized first so a fresh database accepts the events.

    Raises:
        ValueError: If count or days is not positive
        StorageError: If the store cannot be initialized
    """
    if count <= 0:
        raise ValueError("count must be > 0")
    if days <= 0:
        raise ValueError("days must be > 0")

    store.initialize()

    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)
    events = []
    for _ in range(count):
        ip, agent = rng.choice(DEMO_CLIENTS)
        timestamp = now - timedelta(seconds=rng.randint(0, days * 86400 - 1))
        event = build_usage_event(
            prompt_text="x" * rng.randint(40, 4000),
            completion_text="y" * rng.randint(80, 6000),
            model=rng.choice(DEFAULT_MODELS),
            identity=derive_user_identity(ip, agent),
            persona=rng.choice(DEMO_PERSONAS),
            timestamp=timestamp
        )
        store.append(event)
        events.append(event)
    return events
