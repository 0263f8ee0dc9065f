"""
Usage query facade.

Maps a view selector and lookback window onto the aggregation functions,
reading the history once per query.
"""

import logging
from datetime import date, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..storage.repository import UsageStore
from .aggregation import (
    MAX_DAYS,
    build_usage_report,
    compute_daily_usage,
    compute_hourly_distribution,
    compute_persona_usage,
    compute_total_usage,
    recent_records,
    summarize_users,
)

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 30

Payload = Union[Dict[str, Any], List[Dict[str, Any]]]


class UsageView(Enum):
    """Views the dashboard can request."""
    TOTAL = "total"
    USERS = "users"
    DAILY = "daily"
    PERSONA = "persona"
    HOURLY = "hourly"
    RECORDS = "records"
    ALL = "all"


def parse_view(value: Optional[str]) -> UsageView:
    """Resolve a view selector, falling back to ALL for unknown values."""
    if not value:
        return UsageView.ALL
    try:
        return UsageView(value.strip().lower())
    except ValueError:
        logger.debug("Unknown usage view %r, returning all views", value)
        return UsageView.ALL


def query_usage(
    store: UsageStore,
    view: UsageView = UsageView.ALL,
    days: int = DEFAULT_DAYS,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None
) -> Payload:
    """Compute the requested view as a JSON-ready payload.

    Storage trouble has already degraded to an empty history inside the
    store, so this returns zeroed views rather than raising.

    Args:
        store: Usage store to scan
        view: Which view to compute
        days: Lookback window for the daily view (and ALL)
        today: Last day of the daily window (defaults to the current UTC date)
        tz: Time zone for hourly buckets (defaults to server local time)

    Returns:
        A dict for TOTAL and ALL, a list of dicts otherwise

    Raises:
        ValueError: If days is not between 1 and MAX_DAYS
    """
    if days <= 0:
        raise ValueError("days must be > 0")
    if days > MAX_DAYS:
        raise ValueError(f"days must be <= {MAX_DAYS}")

    events = store.read_all()

    if view == UsageView.TOTAL:
        return compute_total_usage(events).to_dict()
    if view == UsageView.USERS:
        return [u.to_dict() for u in summarize_users(events)]
    if view == UsageView.DAILY:
        return [d.to_dict() for d in compute_daily_usage(events, days=days, today=today)]
    if view == UsageView.PERSONA:
        return [p.to_dict() for p in compute_persona_usage(events)]
    if view == UsageView.HOURLY:
        return [h.to_dict() for h in compute_hourly_distribution(events, tz=tz)]
    if view == UsageView.RECORDS:
        return [e.to_dict() for e in recent_records(events)]
    return build_usage_report(events, days=days, today=today, tz=tz).to_dict()
