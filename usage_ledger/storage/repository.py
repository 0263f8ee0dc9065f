"""
Repository pattern for data access.

Append-only storage of usage events behind a single interface with two
interchangeable backends: a relational table and a local JSON file.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config.loader import Settings, StorageBackend
from .db import TABLE_NAME, create_schema, get_engine, token_usage
from .models import UNKNOWN_PERSONA, UsageEvent

logger = logging.getLogger(__name__)

# Most recent rows returned by a relational full scan
DEFAULT_READ_LIMIT = 1000


class StorageError(Exception):
    """Raised when the backing schema cannot be initialized."""
    def __init__(self, message: str, backend: StorageBackend):
        super().__init__(message)
        self.backend = backend


@dataclass(frozen=True)
class InitResult:
    """Outcome of initializing a backend."""
    status: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "message": self.message}


class UsageStore(ABC):
    """Append-only ledger of usage events.

    Implementations never raise from ``append`` or ``read_all``: telemetry
    loss is logged and tolerated so that chat exchanges and dashboard
    queries keep working while storage is unavailable.
    """

    backend: StorageBackend

    @abstractmethod
    def initialize(self) -> InitResult:
        """Ensure the backing schema exists. Idempotent."""

    @abstractmethod
    def append(self, event: UsageEvent) -> None:
        """Persist one event. Failures are logged and swallowed."""

    @abstractmethod
    def read_all(self) -> List[UsageEvent]:
        """Return the persisted history, or an empty list on failure."""


class SqlUsageStore(UsageStore):
    """Usage events stored one row per event in the token_usage table.

    Full scans are capped at the ``read_limit`` most recent rows, so views
    computed from them cover only that window once the cap is reached.
    """

    backend = StorageBackend.RELATIONAL

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        read_limit: int = DEFAULT_READ_LIMIT
    ):
        """Initialize the store.

        Args:
            database_url: Connection URL, used when no engine is given
            engine: Pre-built engine (takes precedence over database_url)
            read_limit: Maximum rows returned by read_all

        Raises:
            ValueError: If neither database_url nor engine is provided
        """
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = get_engine(database_url)
        if read_limit <= 0:
            raise ValueError("read_limit must be > 0")
        self.engine = engine
        self.read_limit = read_limit

    def initialize(self) -> InitResult:
        """Create the token_usage table if it doesn't exist.

        Raises:
            StorageError: If the schema cannot be created
        """
        try:
            create_schema(self.engine)
        except SQLAlchemyError as e:
            logger.exception("initialize failed (backend=relational)")
            raise StorageError(f"Failed to initialize {TABLE_NAME}: {e}", self.backend) from e
        logger.info("Relational usage store ready (table=%s)", TABLE_NAME)
        return InitResult(
            status="success",
            message=f"Table {TABLE_NAME} created or already exists"
        )

    def append(self, event: UsageEvent) -> None:
        """Insert a single usage event.

        Each insert runs in its own transaction. A duplicate id is rejected
        by the primary key and logged, never merged into the existing row.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(token_usage.insert().values(
                    id=event.id,
                    user_id=event.user_id,
                    user_name=event.user_name,
                    timestamp=event.timestamp,
                    model=event.model,
                    prompt_tokens=event.prompt_tokens,
                    completion_tokens=event.completion_tokens,
                    total_tokens=event.total_tokens,
                    persona=event.persona,
                ))
        except SQLAlchemyError:
            logger.exception("append failed (backend=relational id=%s)", event.id)

    def read_all(self) -> List[UsageEvent]:
        """Fetch the most recent events, newest first."""
        query = (
            select(token_usage)
            .order_by(token_usage.c.timestamp.desc())
            .limit(self.read_limit)
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError:
            logger.exception("read_all failed (backend=relational)")
            return []

        events = []
        for row in rows:
            try:
                events.append(_row_to_event(row))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed row id=%s: %s", row.get("id"), e)
        return events


def _row_to_event(row: Mapping[str, Any]) -> UsageEvent:
    return UsageEvent(
        id=row["id"],
        user_id=row["user_id"],
        user_name=row["user_name"] or "",
        # SQLite hands back naive datetimes; UsageEvent reads them as UTC
        timestamp=row["timestamp"],
        model=row["model"] or "",
        prompt_tokens=row["prompt_tokens"] or 0,
        completion_tokens=row["completion_tokens"] or 0,
        total_tokens=row["total_tokens"] or 0,
        persona=row["persona"] or UNKNOWN_PERSONA,
    )


class JsonFileUsageStore(UsageStore):
    """Usage events kept as one JSON array in a local file.

    Every append reads the whole history, adds the record and rewrites the
    file, which is fine for local and development volumes. Writes from this
    process are serialized by a lock and land through an atomic rename.
    """

    backend = StorageBackend.FILE

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def initialize(self) -> InitResult:
        return InitResult(
            status="skipped",
            message="Relational database not configured; using local file store"
        )

    def append(self, event: UsageEvent) -> None:
        with self._lock:
            try:
                records = self._load_records()
                records.append(event.to_dict())
                self._write_records(records)
            except OSError:
                logger.exception("append failed (backend=file path=%s id=%s)", self.path, event.id)

    def read_all(self) -> List[UsageEvent]:
        """Return every stored event in append order."""
        try:
            records = self._load_records()
        except OSError:
            logger.exception("read_all failed (backend=file path=%s)", self.path)
            return []

        events = []
        for index, record in enumerate(records):
            try:
                events.append(UsageEvent.from_dict(record))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed record %d in %s: %s", index, self.path, e)
        return events

    def _load_records(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error("Corrupt usage file %s, treating as empty: %s", self.path, e)
                return []
        if not isinstance(data, list):
            logger.error("Usage file %s is not a JSON array, treating as empty", self.path)
            return []
        return data

    def _write_records(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)
        temp_path.replace(self.path)


def create_store(settings: Settings) -> UsageStore:
    """Build the usage store selected by configuration.

    The relational backend is used when a database URL is configured,
    otherwise the local JSON file. The choice holds for the lifetime of
    the returned store.

    Args:
        settings: Loaded application settings

    Returns:
        The configured UsageStore implementation
    """
    if settings.backend == StorageBackend.RELATIONAL:
        logger.info("Using relational usage store")
        return SqlUsageStore(
            database_url=settings.storage.database_url,
            read_limit=settings.storage.read_limit
        )
    logger.info("Using file usage store at %s", settings.storage.data_file)
    return JsonFileUsageStore(settings.storage.data_file)
