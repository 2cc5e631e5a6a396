"""
Pydantic models for the adaptive import pipeline.

These models define the core data types used throughout the importer:
- ImportRequest: Immutable description of what to import
- QueryPartition: One slice of the search space, with its state machine
- ImportRun: One invocation of the orchestrator
- ProgressSnapshot: Read-only progress view handed to observers
"""

import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .errors import IllegalTransitionError


SPLIT_REASON_TIME_RANGE = "time_range_too_many_results"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ImportMode(str, Enum):
    """How coarse the initial partitioning is."""

    QUICK = "quick"
    STANDARD = "standard"
    FULL = "full"
    ADAPTIVE = "adaptive"


class PartitionStatus(str, Enum):
    """Lifecycle states of a query partition."""

    PENDING = "pending"
    DISCOVERING = "discovering"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    SPLIT_NEEDED = "split_needed"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[PartitionStatus, frozenset[PartitionStatus]] = {
    PartitionStatus.PENDING: frozenset({PartitionStatus.DISCOVERING, PartitionStatus.SKIPPED}),
    PartitionStatus.DISCOVERING: frozenset({
        PartitionStatus.SPLIT_NEEDED,
        PartitionStatus.IMPORTING,
        PartitionStatus.PENDING,  # requeued for retry
        PartitionStatus.FAILED,
    }),
    PartitionStatus.IMPORTING: frozenset({
        PartitionStatus.COMPLETED,
        PartitionStatus.PENDING,  # requeued for retry
        PartitionStatus.FAILED,
    }),
    # Replaced by two pending children
    PartitionStatus.SPLIT_NEEDED: frozenset(),
    PartitionStatus.COMPLETED: frozenset(),
    PartitionStatus.FAILED: frozenset(),
    PartitionStatus.SKIPPED: frozenset(),
}


class RunStatus(str, Enum):
    """Lifecycle states of an import run."""

    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ImportRequest(BaseModel):
    """Coarse import request submitted by the caller."""

    model_config = ConfigDict(frozen=True)

    country_code: str = "DE"
    start_date: datetime
    end_date: datetime
    categories: Optional[tuple[str, ...]] = None  # None = no category filter
    cities: Optional[tuple[str, ...]] = None
    mode: ImportMode = ImportMode.STANDARD
    max_partitions: Optional[int] = Field(default=None, gt=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("country_code")
    @classmethod
    def _normalize_country(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 2:
            raise ValueError(f"country_code must be a two-letter code, got '{value}'")
        return value

    @model_validator(mode="after")
    def _check_selection(self) -> "ImportRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.categories is not None and not self.categories:
            raise ValueError("at least one category must be selected")
        if self.cities is not None and not self.cities:
            raise ValueError("city list must not be empty when given")
        if self.cities is not None and any(not city.strip() for city in self.cities):
            raise ValueError("city names must not be blank")
        return self


class QueryPartition(BaseModel):
    """One disjoint slice of the search space and its import state."""

    id: str
    window_start: datetime
    window_end: datetime
    category: Optional[str] = None
    city: Optional[str] = None
    country_code: str
    label: str
    priority: int = 0  # lower = sooner

    status: PartitionStatus = PartitionStatus.PENDING
    discovered_count: Optional[int] = None
    pages_fetched: int = 0
    events_found: int = 0
    events_imported: int = 0
    events_skipped: int = 0
    events_errored: int = 0
    category_breakdown: dict[str, int] = Field(default_factory=dict)
    error_message: Optional[str] = None
    retry_count: int = 0

    parent_partition_id: Optional[str] = None
    split_reason: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @staticmethod
    def make_id(
        window_start: datetime,
        window_end: datetime,
        category: Optional[str] = None,
        city: Optional[str] = None,
    ) -> str:
        """Derive a stable identifier from the partition's dimension values."""
        key_string = "|".join([
            _as_utc(window_start).isoformat(),
            _as_utc(window_end).isoformat(),
            category or "",
            city or "",
        ])
        return hashlib.md5(key_string.encode()).hexdigest()[:16]

    @classmethod
    def create(
        cls,
        window_start: datetime,
        window_end: datetime,
        country_code: str,
        category: Optional[str] = None,
        city: Optional[str] = None,
        priority: int = 0,
        label: Optional[str] = None,
        **extra: Any,
    ) -> "QueryPartition":
        window_start = _as_utc(window_start)
        window_end = _as_utc(window_end)
        if label is None:
            label = describe_window(window_start, window_end, category, city or country_code)
        return cls(
            id=cls.make_id(window_start, window_end, category, city),
            window_start=window_start,
            window_end=window_end,
            category=category,
            city=city,
            country_code=country_code,
            label=label,
            priority=priority,
            **extra,
        )

    @property
    def window_width(self):
        return self.window_end - self.window_start

    def transition(self, target: PartitionStatus) -> None:
        """Move to ``target`` or raise if the state machine forbids it."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise IllegalTransitionError(self.id, self.status.value, target.value)
        self.status = target
        if target == PartitionStatus.IMPORTING:
            self.started_at = utc_now()
        elif target.is_terminal:
            self.completed_at = utc_now()

    def reset_counters(self) -> None:
        """Clear per-attempt counters before a (re)import."""
        self.pages_fetched = 0
        self.events_found = 0
        self.events_imported = 0
        self.events_skipped = 0
        self.events_errored = 0
        self.category_breakdown = {}


def describe_window(
    start: datetime,
    end: datetime,
    category: Optional[str],
    place: Optional[str],
) -> str:
    """Human readable label, e.g. 'Music • 2025-01-01 to 2025-03-01 • Berlin'."""
    parts = [category or "All categories", f"{start:%Y-%m-%d} to {end:%Y-%m-%d}"]
    if place:
        parts.append(place)
    return " • ".join(parts)


class ImportRun(BaseModel):
    """One invocation of the orchestrator."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request: ImportRequest
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    total_found: int = 0
    total_imported: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    partitions_completed: int = 0
    partitions_failed: int = 0
    category_breakdown: dict[str, int] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.status != RunStatus.RUNNING


class ProgressSnapshot(BaseModel):
    """Point-in-time view of a run's progress."""

    run_id: str
    total_partitions: int
    completed_partitions: int
    failed_partitions: int = 0
    active_partition: Optional[QueryPartition] = None
    total_events_found: int = 0
    total_events_imported: int = 0
    total_events_skipped: int = 0
    total_errors: int = 0
    estimated_remaining: Optional[int] = None

    @computed_field
    @property
    def percent_complete(self) -> float:
        """Share of known partitions that reached a terminal state."""
        if self.total_partitions == 0:
            return 100.0
        done = self.completed_partitions + self.failed_partitions
        return round(done / self.total_partitions * 100, 1)


class DiscoveryResult(BaseModel):
    """Outcome of a size probe."""

    total_elements: int
    needs_split: bool


class SearchPage(BaseModel):
    """One page of upstream search results."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    total_elements: int = 0
    total_pages: int = 0
    page_number: int = 0
    page_size: int = 0


class BatchResult(BaseModel):
    """Result of importing one page of records."""

    imported: int = 0
    skipped: int = 0
    errors: int = 0
    category_breakdown: dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.imported + self.skipped + self.errors


class FetchOutcome(BaseModel):
    """Accumulated counters for one import attempt of a partition."""

    found: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    pages_fetched: int = 0
    category_breakdown: dict[str, int] = Field(default_factory=dict)

    def add_batch(self, batch_size: int, result: BatchResult) -> None:
        self.found += batch_size
        self.imported += result.imported
        self.skipped += result.skipped
        self.errors += result.errors
        self.pages_fetched += 1
        for label, count in result.category_breakdown.items():
            self.category_breakdown[label] = self.category_breakdown.get(label, 0) + count


class StoredEvent(BaseModel):
    """Event row as written to the event store."""

    external_id: str
    external_source: str
    title: str
    description: str
    category: str
    location: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    start_date: str  # YYYY-MM-DD
    start_time: str  # HH:MM
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    image_url: Optional[str] = None
    ticket_url: Optional[str] = None
    external_url: Optional[str] = None
    is_published: bool = True
    is_free: bool = False


class StartResult(BaseModel):
    """Synchronous answer to a start request."""

    success: bool
    message: str
    run_id: Optional[str] = None


class RunProgress(BaseModel):
    """Ledger view of a run, for callers not holding the progress callback."""

    run: ImportRun
    snapshot: ProgressSnapshot
    partitions_by_status: dict[str, int] = Field(default_factory=dict)
