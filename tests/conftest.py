"""Shared pytest fixtures for adaptive importer tests."""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest
from dateutil.parser import isoparse

from servers.event_import.config import ImportSettings
from servers.event_import.errors import UpstreamError
from servers.event_import.ledger import InMemoryRunLedger
from servers.event_import.models import ImportRequest, QueryPartition, SearchPage
from servers.event_import.store import InMemoryEventStore

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_event_record(
    event_id: str,
    start: datetime,
    name: Optional[str] = None,
    segment: str = "Music",
    genre: str = "Rock",
    city: str = "Berlin",
) -> dict[str, Any]:
    """Discovery API event record in the shape the importer reads."""
    return {
        "id": event_id,
        "name": name or f"Event {event_id}",
        "url": f"https://www.ticketmaster.de/event/{event_id}",
        "info": "Doors open one hour before the show",
        "dates": {
            "start": {
                "localDate": start.strftime("%Y-%m-%d"),
                "dateTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }
        },
        "classifications": [
            {"segment": {"name": segment}, "genre": {"name": genre}}
        ],
        "images": [
            {"url": f"https://img.example/{event_id}_small.jpg", "ratio": "4_3", "width": 305},
            {"url": f"https://img.example/{event_id}_wide.jpg", "ratio": "16_9", "width": 1024},
        ],
        "_embedded": {
            "venues": [
                {
                    "name": "Columbiahalle",
                    "city": {"name": city},
                    "country": {"name": "Germany"},
                    "location": {"latitude": "52.4862", "longitude": "13.3910"},
                }
            ]
        },
    }


def spread_events(
    count: int,
    start: datetime,
    end: datetime,
    prefix: str = "evt",
    **record_fields: Any,
) -> list[dict[str, Any]]:
    """``count`` records evenly spread over [start, end)."""
    step = (end - start) / count
    return [
        make_event_record(f"{prefix}-{i}", start + step * i, **record_fields)
        for i in range(count)
    ]


def _record_start(record: dict[str, Any]) -> datetime:
    return isoparse(record["dates"]["start"]["dateTime"])


class FakeSearchClient:
    """In-memory stand-in for the Discovery API.

    Serves a fixed universe of records, filtered by the partition's window,
    segment and city and paged the way the real API pages.

    Args:
        events: Records the fake "upstream" holds
        failures: Partition id -> number of calls that fail before succeeding
        reported_total: Optional override for the reported totalElements
    """

    def __init__(
        self,
        events: Optional[list[dict[str, Any]]] = None,
        failures: Optional[dict[str, int]] = None,
        reported_total: Optional[Callable[[QueryPartition], Optional[int]]] = None,
    ):
        self.events = sorted(events or [], key=_record_start)
        self.failures = dict(failures or {})
        self.reported_total = reported_total
        self.calls: list[tuple[str, int, int]] = []

    def matching(self, partition: QueryPartition) -> list[dict[str, Any]]:
        matches = []
        for record in self.events:
            if not partition.window_start <= _record_start(record) < partition.window_end:
                continue
            segment = record["classifications"][0]["segment"]["name"]
            if partition.category and segment != partition.category:
                continue
            city = record["_embedded"]["venues"][0]["city"]["name"]
            if partition.city and city != partition.city:
                continue
            matches.append(record)
        return matches

    async def search(self, partition: QueryPartition, page: int, size: int) -> SearchPage:
        self.calls.append((partition.id, page, size))

        if self.failures.get(partition.id, 0) > 0:
            self.failures[partition.id] -= 1
            raise UpstreamError("HTTP 503: Service Unavailable", status_code=503)

        matches = self.matching(partition)
        total = len(matches)
        if self.reported_total is not None:
            override = self.reported_total(partition)
            if override is not None:
                total = override

        return SearchPage(
            records=matches[page * size:(page + 1) * size],
            total_elements=total,
            total_pages=math.ceil(total / size),
            page_number=page,
            page_size=size,
        )

    def probes(self) -> list[tuple[str, int, int]]:
        return [call for call in self.calls if call[2] == 1]

    def page_calls(self) -> list[tuple[str, int, int]]:
        return [call for call in self.calls if call[2] != 1]


@pytest.fixture
def now() -> datetime:
    """Provide the fixed reference time used for priorities."""
    return NOW


@pytest.fixture
def settings() -> ImportSettings:
    """Provide small limits and no sleeping, so runs stay fast."""
    return ImportSettings(
        api_key="test-key",
        paging_ceiling=10,
        page_size=5,
        rate_limit_delay=0,
        max_retry_attempts=3,
        backoff_base_delay=0,
    )


@pytest.fixture
def store() -> InMemoryEventStore:
    """Provide an empty in-memory event store."""
    return InMemoryEventStore()


@pytest.fixture
def ledger() -> InMemoryRunLedger:
    """Provide an empty in-memory run ledger."""
    return InMemoryRunLedger()


@pytest.fixture
def event_record() -> Callable[..., dict[str, Any]]:
    """Provide the Discovery record factory."""
    return make_event_record


@pytest.fixture
def event_spread() -> Callable[..., list[dict[str, Any]]]:
    """Provide the factory for records spread over a time range."""
    return spread_events


@pytest.fixture
def fake_client() -> type[FakeSearchClient]:
    """Provide the fake search client class."""
    return FakeSearchClient


@pytest.fixture
def quick_request() -> ImportRequest:
    """Provide a quick request: one 90 day window, two categories."""
    return ImportRequest(
        country_code="DE",
        start_date=NOW,
        end_date=NOW + timedelta(days=90),
        categories=("Music", "Sports"),
        mode="quick",
    )


@pytest.fixture
def sample_partition() -> QueryPartition:
    """Provide a pending Music partition over January 2025."""
    return QueryPartition.create(
        window_start=NOW,
        window_end=NOW + timedelta(days=31),
        country_code="DE",
        category="Music",
    )
