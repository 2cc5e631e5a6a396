"""Tests for partition generation and planning."""

from datetime import datetime, timedelta, timezone

import pytest

from servers.event_import.config import ImportSettings
from servers.event_import.errors import InvalidImportRequest
from servers.event_import.models import ImportMode, ImportRequest
from servers.event_import.partitioning import (
    calculate_priority,
    estimate_import,
    generate_partitions,
    generate_time_windows,
    plan_partitions,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _request(**kwargs) -> ImportRequest:
    values = {
        "country_code": "DE",
        "start_date": NOW,
        "end_date": NOW + timedelta(days=180),
    }
    values.update(kwargs)
    return ImportRequest(**values)


class TestTimeWindows:
    """Tests for generate_time_windows."""

    def test_exact_multiple(self):
        """Test a range that divides evenly."""
        windows = generate_time_windows(NOW, NOW + timedelta(days=60), timedelta(days=30))
        assert windows == [
            (NOW, NOW + timedelta(days=30)),
            (NOW + timedelta(days=30), NOW + timedelta(days=60)),
        ]

    def test_last_window_is_clipped(self):
        """Test that the final window ends at the range end."""
        windows = generate_time_windows(NOW, NOW + timedelta(days=70), timedelta(days=30))
        assert len(windows) == 3
        assert windows[-1] == (NOW + timedelta(days=60), NOW + timedelta(days=70))

    @pytest.mark.parametrize("days,width", [(1, 30), (59, 60), (365, 30), (100, 7)])
    def test_windows_cover_range_without_gaps(self, days: int, width: int):
        """Test that windows are contiguous and cover [start, end) exactly."""
        end = NOW + timedelta(days=days, hours=5)
        windows = generate_time_windows(NOW, end, timedelta(days=width))

        assert windows[0][0] == NOW
        assert windows[-1][1] == end
        for (_, previous_end), (next_start, _) in zip(windows, windows[1:]):
            assert previous_end == next_start
        assert all(start < stop for start, stop in windows)


class TestPriority:
    """Tests for calculate_priority."""

    def test_future_window(self):
        """Test whole days until the window starts."""
        assert calculate_priority(NOW + timedelta(days=30, hours=12), NOW) == 30

    def test_window_already_open(self):
        """Test that windows in the past are clamped to zero."""
        assert calculate_priority(NOW - timedelta(days=3), NOW) == 0


class TestPlanPartitions:
    """Tests for plan_partitions."""

    def test_quick_mode_two_categories(self, quick_request: ImportRequest, now: datetime):
        """Test one partition per category over a single window, priority 0."""
        partitions = generate_partitions(quick_request, now=now)

        assert len(partitions) == 2
        assert {p.category for p in partitions} == {"Music", "Sports"}
        assert all(p.priority == 0 for p in partitions)
        assert all(p.window_start == quick_request.start_date for p in partitions)
        assert all(p.window_end == quick_request.end_date for p in partitions)

    def test_standard_mode_window_width(self):
        """Test that standard mode cuts 60 day windows."""
        partitions = generate_partitions(_request(mode="standard"), now=NOW)
        assert len(partitions) == 3
        assert all(p.window_width == timedelta(days=60) for p in partitions)

    def test_sorted_by_priority(self):
        """Test that sooner windows come first."""
        partitions = generate_partitions(
            _request(mode="full", categories=["Music", "Sports"], cities=["Berlin"]),
            now=NOW,
        )
        priorities = [p.priority for p in partitions]
        assert priorities == sorted(priorities)
        assert priorities[0] == 0
        assert priorities[-1] == 150

    def test_categories_resolved_to_segments(self):
        """Test that category keys map to upstream segment names."""
        partitions = generate_partitions(
            _request(mode="quick", categories=["arts-theatre"]), now=NOW
        )
        assert {p.category for p in partitions} == {"Arts & Theatre"}

    def test_unknown_category_rejected(self):
        """Test that an unresolvable category is a bad request."""
        with pytest.raises(InvalidImportRequest):
            plan_partitions(_request(categories=["Knitting"]), now=NOW)

    def test_no_category_filter(self):
        """Test that no categories means one unfiltered partition per window."""
        partitions = generate_partitions(_request(mode="quick"), now=NOW)
        assert len(partitions) == 2
        assert all(p.category is None for p in partitions)

    def test_full_mode_uses_default_cities(self):
        """Test that full mode crosses with the top reference cities."""
        partitions = generate_partitions(
            _request(mode="full", end_date=NOW + timedelta(days=30), categories=["Music"]),
            now=NOW,
        )
        assert [p.city for p in partitions] == ["Berlin", "München", "Hamburg"]

    def test_explicit_cities_resolved(self):
        """Test that typed city names are matched to reference spellings."""
        partitions = generate_partitions(
            _request(mode="quick", end_date=NOW + timedelta(days=30), cities=["berlin", "Kiel"]),
            now=NOW,
        )
        assert [p.city for p in partitions] == ["Berlin", "Kiel"]

    def test_blank_city_never_widens_to_country(self):
        """Test that an unvalidated blank city list is refused instead of dropped."""
        request = ImportRequest.model_construct(
            country_code="DE",
            start_date=NOW,
            end_date=NOW + timedelta(days=30),
            categories=None,
            cities=("   ",),
            mode=ImportMode.QUICK,
            max_partitions=None,
        )
        with pytest.raises(InvalidImportRequest):
            plan_partitions(request, now=NOW)

    def test_partitions_cover_request(self):
        """Test that each category's windows cover the request exactly."""
        request = _request(mode="full", end_date=NOW + timedelta(days=95), categories=["Music"])
        partitions = generate_partitions(request, now=NOW)
        berlin = sorted(
            (p for p in partitions if p.city == "Berlin"), key=lambda p: p.window_start
        )

        assert berlin[0].window_start == request.start_date
        assert berlin[-1].window_end == request.end_date
        for previous, following in zip(berlin, berlin[1:]):
            assert previous.window_end == following.window_start

    def test_max_partitions_truncates_latest(self):
        """Test that the cap keeps the soonest partitions and reports the rest."""
        plan = plan_partitions(_request(mode="full", max_partitions=4), now=NOW)

        assert len(plan.partitions) == 4
        assert len(plan.dropped) == 14
        assert max(p.priority for p in plan.partitions) <= min(p.priority for p in plan.dropped)

    def test_partition_ids_unique(self):
        """Test that no two generated partitions share an id."""
        partitions = generate_partitions(
            _request(mode="full", categories=["Music", "Sports"]), now=NOW
        )
        assert len({p.id for p in partitions}) == len(partitions)

    def test_custom_settings_window(self):
        """Test that settings decide the window width."""
        request = _request(mode="quick")
        settings = ImportSettings()
        partitions = generate_partitions(request, settings, now=NOW)
        assert partitions[0].window_width == settings.window_width(ImportMode.QUICK)


class TestEstimate:
    """Tests for estimate_import."""

    def test_estimate_ranges(self):
        """Test the duration and volume ranges of a plan."""
        plan = plan_partitions(_request(mode="standard"), now=NOW)
        estimate = estimate_import(plan, ImportMode.STANDARD)

        assert estimate.partition_count == 3
        assert estimate.dropped_count == 0
        # 3 partitions * 20 s = 60 s
        assert estimate.minutes_min == 1
        assert estimate.minutes_max == 2
        assert estimate.events_min == 900
        assert estimate.events_max == 2100
