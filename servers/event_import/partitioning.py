"""
Partition generator.

Expands an ImportRequest into an ordered list of pending QueryPartitions:
1. Cut [start, end) into contiguous, disjoint time windows (width per mode)
2. Cross each window with the category list (or no category filter)
3. For full mode or an explicit city list, cross again with the cities
4. Priority = whole days from "now" to the window start (sooner first)
5. Sort by priority, then truncate to max_partitions if set

Truncation drops the latest windows. That trades completeness for a bounded
run and is reported back as the dropped part of the plan.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from .config import FULL_MODE_DEFAULT_CITIES, ImportSettings
from .errors import InvalidImportRequest
from .models import ImportMode, ImportRequest, QueryPartition, utc_now
from .reference import default_cities, resolve_category, resolve_city

logger = structlog.get_logger()

# Rough planning figures from previous runs
SECONDS_PER_PARTITION = 20
EVENTS_PER_PARTITION = {
    ImportMode.QUICK: 600,
    ImportMode.STANDARD: 500,
    ImportMode.FULL: 450,
    ImportMode.ADAPTIVE: 550,
}


class PartitionPlan(BaseModel):
    """Generated partitions, split into the ones kept and the ones capped away."""

    partitions: list[QueryPartition]
    dropped: list[QueryPartition] = Field(default_factory=list)


class ImportEstimate(BaseModel):
    partition_count: int
    dropped_count: int
    minutes_min: int
    minutes_max: int
    events_min: int
    events_max: int


def generate_time_windows(
    start: datetime,
    end: datetime,
    width: timedelta,
) -> list[tuple[datetime, datetime]]:
    """Cut [start, end) into half-open windows of at most ``width``."""
    windows = []
    current = start
    while current < end:
        window_end = min(current + width, end)
        windows.append((current, window_end))
        current = window_end
    return windows


def calculate_priority(window_start: datetime, now: datetime) -> int:
    """Days from now until the window starts; windows already open get 0."""
    days = (window_start - now) // timedelta(days=1)
    return max(0, days)


def _resolve_categories(categories: Optional[tuple[str, ...]]) -> list[Optional[str]]:
    if categories is None:
        return [None]

    resolved: list[Optional[str]] = []
    for name in categories:
        segment = resolve_category(name)
        if segment is None:
            raise InvalidImportRequest(f"Unknown category: {name!r}")
        if segment not in resolved:
            resolved.append(segment)
    return resolved


def _resolve_cities(request: ImportRequest) -> list[Optional[str]]:
    if request.cities is not None:
        cities: list[Optional[str]] = []
        for name in request.cities:
            city = resolve_city(name, request.country_code)
            if not city:
                raise InvalidImportRequest(f"Blank city in {request.cities!r}")
            if city not in cities:
                cities.append(city)
        return cities

    if request.mode == ImportMode.FULL:
        return list(default_cities(request.country_code, FULL_MODE_DEFAULT_CITIES)) or [None]

    return [None]


def plan_partitions(
    request: ImportRequest,
    settings: Optional[ImportSettings] = None,
    now: Optional[datetime] = None,
) -> PartitionPlan:
    """Generate the prioritized partitions for a request.

    Args:
        request: The import request
        settings: Importer settings (window widths); defaults if omitted
        now: Reference time for priorities; defaults to the current time

    Returns:
        PartitionPlan with kept partitions sorted by priority and the
        partitions dropped by the max_partitions cap

    Raises:
        InvalidImportRequest: If a category name cannot be resolved
    """
    settings = settings or ImportSettings()
    now = now or utc_now()

    windows = generate_time_windows(
        request.start_date,
        request.end_date,
        settings.window_width(request.mode),
    )
    categories = _resolve_categories(request.categories)
    cities = _resolve_cities(request)

    partitions: list[QueryPartition] = []
    for window_start, window_end in windows:
        priority = calculate_priority(window_start, now)
        for category in categories:
            for city in cities:
                partitions.append(QueryPartition.create(
                    window_start=window_start,
                    window_end=window_end,
                    country_code=request.country_code,
                    category=category,
                    city=city,
                    priority=priority,
                ))

    # Stable: equal priorities keep generation order
    partitions.sort(key=lambda p: p.priority)

    dropped: list[QueryPartition] = []
    if request.max_partitions and len(partitions) > request.max_partitions:
        dropped = partitions[request.max_partitions:]
        partitions = partitions[:request.max_partitions]
        logger.warning(
            "partitions_truncated",
            kept=len(partitions),
            dropped=len(dropped),
            max_partitions=request.max_partitions,
        )

    logger.info(
        "partitions_generated",
        mode=request.mode.value,
        windows=len(windows),
        categories=len(categories),
        cities=len(cities),
        partitions=len(partitions),
    )
    return PartitionPlan(partitions=partitions, dropped=dropped)


def generate_partitions(
    request: ImportRequest,
    settings: Optional[ImportSettings] = None,
    now: Optional[datetime] = None,
) -> list[QueryPartition]:
    """Kept partitions of ``plan_partitions``."""
    return plan_partitions(request, settings, now).partitions


def estimate_import(plan: PartitionPlan, mode: ImportMode) -> ImportEstimate:
    """Ballpark duration and event volume of a plan, before any probing."""
    count = len(plan.partitions)
    per_partition = EVENTS_PER_PARTITION[mode]
    return ImportEstimate(
        partition_count=count,
        dropped_count=len(plan.dropped),
        minutes_min=math.ceil(count * SECONDS_PER_PARTITION * 7 / 600),
        minutes_max=math.ceil(count * SECONDS_PER_PARTITION * 13 / 600),
        events_min=math.floor(count * per_partition * 6 / 10),
        events_max=math.ceil(count * per_partition * 14 / 10),
    )
