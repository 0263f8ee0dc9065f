"""
Usage aggregation.

Pure reductions of the usage event history into the dashboard views.
Nothing here performs I/O; callers pass in the events from one full scan,
and an empty history yields all-zero views.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional

from ..storage.models import UNKNOWN_PERSONA, UsageEvent, format_timestamp

HOURS_PER_DAY = 24

# Longest daily window; larger spans overflow date arithmetic
MAX_DAYS = 3650

# Raw events returned by the records view
RECENT_RECORDS_LIMIT = 100


@dataclass
class TotalUsage:
    """Totals across the whole history."""
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    total_requests: int = 0
    total_users: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPromptTokens": self.total_prompt_tokens,
            "totalCompletionTokens": self.total_completion_tokens,
            "totalTokens": self.total_tokens,
            "totalRequests": self.total_requests,
            "totalUsers": self.total_users,
        }


@dataclass
class UserSummary:
    """Usage of one pseudo-identity."""
    user_id: str
    user_name: str
    last_used: datetime
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "totalPromptTokens": self.total_prompt_tokens,
            "totalCompletionTokens": self.total_completion_tokens,
            "totalTokens": self.total_tokens,
            "requestCount": self.request_count,
            "lastUsed": format_timestamp(self.last_used),
        }


@dataclass
class DailyUsage:
    """Usage on one UTC calendar day."""
    date: date
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "totalTokens": self.total_tokens,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "requestCount": self.request_count,
        }


@dataclass
class PersonaUsage:
    """Usage attributed to one persona tag."""
    persona: str
    total_tokens: int = 0
    request_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "persona": self.persona,
            "totalTokens": self.total_tokens,
            "requestCount": self.request_count,
        }


@dataclass
class HourlyUsage:
    """Usage falling in one hour of the day."""
    hour: int
    request_count: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": self.hour,
            "requestCount": self.request_count,
            "totalTokens": self.total_tokens,
        }


@dataclass
class UsageReport:
    """All five views computed from one read of the history."""
    total: TotalUsage
    users: List[UserSummary] = field(default_factory=list)
    daily: List[DailyUsage] = field(default_factory=list)
    persona: List[PersonaUsage] = field(default_factory=list)
    hourly: List[HourlyUsage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total.to_dict(),
            "users": [u.to_dict() for u in self.users],
            "daily": [d.to_dict() for d in self.daily],
            "persona": [p.to_dict() for p in self.persona],
            "hourly": [h.to_dict() for h in self.hourly],
        }


def compute_total_usage(events: Iterable[UsageEvent]) -> TotalUsage:
    """Sum token fields and count distinct users.

    ``total_users`` counts the users present in the events given, which is
    the capped window when the relational backend truncates its scan.
    """
    total = TotalUsage()
    users = set()
    for event in events:
        total.total_prompt_tokens += event.prompt_tokens
        total.total_completion_tokens += event.completion_tokens
        total.total_tokens += event.total_tokens
        total.total_requests += 1
        users.add(event.user_id)
    total.total_users = len(users)
    return total


def summarize_users(events: Iterable[UsageEvent]) -> List[UserSummary]:
    """Per-user totals, highest total_tokens first.

    The display name comes from the first event seen for a user; last_used
    is the greatest timestamp observed regardless of event order.
    """
    summaries: Dict[str, UserSummary] = {}
    for event in events:
        summary = summaries.get(event.user_id)
        if summary is None:
            summary = UserSummary(
                user_id=event.user_id,
                user_name=event.user_name,
                last_used=event.timestamp
            )
            summaries[event.user_id] = summary
        summary.total_prompt_tokens += event.prompt_tokens
        summary.total_completion_tokens += event.completion_tokens
        summary.total_tokens += event.total_tokens
        summary.request_count += 1
        if event.timestamp > summary.last_used:
            summary.last_used = event.timestamp
    return sorted(summaries.values(), key=lambda s: s.total_tokens, reverse=True)


def compute_daily_usage(
    events: Iterable[UsageEvent],
    days: int = 30,
    today: Optional[date] = None
) -> List[DailyUsage]:
    """Usage per UTC day over the trailing window, oldest day first.

    The window is ``days`` calendar days ending with today (inclusive).
    Every day is present even without events; events outside the window
    are ignored.

    Args:
        events: Usage history
        days: Window length in days
        today: Last day of the window (defaults to the current UTC date)

    Returns:
        Exactly ``days`` entries with consecutive dates

    Raises:
        ValueError: If days is not between 1 and MAX_DAYS
    """
    if days <= 0:
        raise ValueError("days must be > 0")
    if days > MAX_DAYS:
        raise ValueError(f"days must be <= {MAX_DAYS}")
    if today is None:
        today = datetime.now(timezone.utc).date()

    buckets: Dict[date, DailyUsage] = {}
    for offset in range(days):
        day = today - timedelta(days=offset)
        buckets[day] = DailyUsage(date=day)

    for event in events:
        bucket = buckets.get(event.timestamp.astimezone(timezone.utc).date())
        if bucket is None:
            continue
        bucket.total_tokens += event.total_tokens
        bucket.prompt_tokens += event.prompt_tokens
        bucket.completion_tokens += event.completion_tokens
        bucket.request_count += 1

    return sorted(buckets.values(), key=lambda d: d.date)


def compute_persona_usage(events: Iterable[UsageEvent]) -> List[PersonaUsage]:
    """Usage per raw persona tag, highest total_tokens first."""
    personas: Dict[str, PersonaUsage] = {}
    for event in events:
        key = event.persona or UNKNOWN_PERSONA
        usage = personas.setdefault(key, PersonaUsage(persona=key))
        usage.total_tokens += event.total_tokens
        usage.request_count += 1
    return sorted(personas.values(), key=lambda p: p.total_tokens, reverse=True)


def compute_hourly_distribution(
    events: Iterable[UsageEvent],
    tz: Optional[tzinfo] = None
) -> List[HourlyUsage]:
    """Usage per hour of day, hours 0 through 23 in order.

    Args:
        events: Usage history
        tz: Time zone for the hour buckets (defaults to the server's local zone)
    """
    hours = [HourlyUsage(hour=h) for h in range(HOURS_PER_DAY)]
    for event in events:
        local = event.timestamp.astimezone(tz) if tz is not None else event.timestamp.astimezone()
        bucket = hours[local.hour]
        bucket.request_count += 1
        bucket.total_tokens += event.total_tokens
    return hours


def recent_records(events: Iterable[UsageEvent], limit: int = RECENT_RECORDS_LIMIT) -> List[UsageEvent]:
    """The most recent raw events, newest first."""
    return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]


def build_usage_report(
    events: List[UsageEvent],
    days: int = 30,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None
) -> UsageReport:
    """Compute every view over the same list of events."""
    return UsageReport(
        total=compute_total_usage(events),
        users=summarize_users(events),
        daily=compute_daily_usage(events, days=days, today=today),
        persona=compute_persona_usage(events),
        hourly=compute_hourly_distribution(events, tz=tz),
    )
