"""Tests for the page fetcher."""

from unittest.mock import AsyncMock, patch

import pytest

from servers.event_import.cancellation import CancellationToken
from servers.event_import.errors import UpstreamError
from servers.event_import.fetcher import PageFetcher, max_pages_for
from servers.event_import.importer import DedupImporter
from servers.event_import.models import QueryPartition, SearchPage


class CancelAfterFirstPage:
    """Client wrapper that raises the stop flag once a page was served."""

    def __init__(self, inner, token: CancellationToken):
        self.inner = inner
        self.token = token

    async def search(self, partition: QueryPartition, page: int, size: int) -> SearchPage:
        result = await self.inner.search(partition, page, size)
        self.token.cancel("user stop")
        return result


class FailOnPage:
    """Client wrapper that fails one specific page."""

    def __init__(self, inner, page: int):
        self.inner = inner
        self.page = page

    async def search(self, partition: QueryPartition, page: int, size: int) -> SearchPage:
        if page == self.page:
            raise UpstreamError("HTTP 502: Bad Gateway", status_code=502)
        return await self.inner.search(partition, page, size)


def _fetcher(client, store, token=None, delay=0.0) -> PageFetcher:
    return PageFetcher(
        client,
        DedupImporter(store),
        page_size=5,
        paging_ceiling=10,
        rate_limit_delay=delay,
        token=token,
    )


class TestMaxPages:
    """Tests for max_pages_for."""

    @pytest.mark.parametrize(
        "total,ceiling,size,expected",
        [(0, 1000, 200, 0), (1, 1000, 200, 1), (200, 1000, 200, 1), (201, 1000, 200, 2), (2500, 1000, 200, 5)],
    )
    def test_bound(self, total, ceiling, size, expected):
        """Test the page bound for various totals."""
        assert max_pages_for(total, ceiling, size) == expected


class TestPageFetcher:
    """Tests for PageFetcher.fetch_partition."""

    @pytest.mark.asyncio
    async def test_fetches_all_pages(self, fake_client, event_spread, store, sample_partition):
        """Test a partition spanning two pages."""
        events = event_spread(8, sample_partition.window_start, sample_partition.window_end)
        client = fake_client(events)

        outcome = await _fetcher(client, store).fetch_partition(sample_partition, 8)

        assert outcome.found == 8
        assert outcome.imported == 8
        assert outcome.pages_fetched == 2
        assert [page for _, page, _ in client.calls] == [0, 1]
        assert len(store) == 8

    @pytest.mark.asyncio
    async def test_stops_at_ceiling(self, fake_client, event_spread, store, sample_partition):
        """Test that an unsplittable partition is imported up to the ceiling."""
        events = event_spread(25, sample_partition.window_start, sample_partition.window_end)
        client = fake_client(events)

        outcome = await _fetcher(client, store).fetch_partition(sample_partition, 25)

        assert outcome.pages_fetched == 2
        assert outcome.found == 10

    @pytest.mark.asyncio
    async def test_empty_page_ends_early(self, fake_client, event_spread, store, sample_partition):
        """Test that an exhausted upstream is a normal completion."""
        events = event_spread(3, sample_partition.window_start, sample_partition.window_end)
        client = fake_client(events, reported_total=lambda p: 20)

        outcome = await _fetcher(client, store).fetch_partition(sample_partition, 20)

        assert outcome.pages_fetched == 1
        assert outcome.found == 3
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_updates_partition_counters(self, fake_client, event_spread, store, sample_partition):
        """Test that the partition carries the running counters."""
        events = event_spread(7, sample_partition.window_start, sample_partition.window_end)

        await _fetcher(fake_client(events), store).fetch_partition(sample_partition, 7)

        assert sample_partition.pages_fetched == 2
        assert sample_partition.events_found == 7
        assert sample_partition.events_imported == 7
        assert sample_partition.category_breakdown == {"Music": 7}

    @pytest.mark.asyncio
    async def test_counters_are_conserved(self, fake_client, event_spread, store, sample_partition):
        """Test imported + skipped + errors == found."""
        events = event_spread(9, sample_partition.window_start, sample_partition.window_end)
        events[4]["name"] = ""
        await DedupImporter(store).import_batch(events[:2])

        outcome = await _fetcher(fake_client(events), store).fetch_partition(sample_partition, 9)

        assert outcome.imported + outcome.skipped + outcome.errors == outcome.found

    @pytest.mark.asyncio
    async def test_error_keeps_partial_counters(self, fake_client, event_spread, store, sample_partition):
        """Test that a failing page aborts but earlier pages stay counted."""
        events = event_spread(10, sample_partition.window_start, sample_partition.window_end)
        client = FailOnPage(fake_client(events), page=1)

        with pytest.raises(UpstreamError):
            await _fetcher(client, store).fetch_partition(sample_partition, 10)

        assert sample_partition.pages_fetched == 1
        assert sample_partition.events_imported == 5

    @pytest.mark.asyncio
    async def test_stop_flag_checked_before_each_page(
        self, fake_client, event_spread, store, sample_partition
    ):
        """Test that a stop request lets the current page finish and no more."""
        events = event_spread(10, sample_partition.window_start, sample_partition.window_end)
        token = CancellationToken()
        client = CancelAfterFirstPage(fake_client(events), token)

        outcome = await _fetcher(client, store, token=token).fetch_partition(sample_partition, 10)

        assert outcome.pages_fetched == 1
        assert outcome.imported == 5

    @pytest.mark.asyncio
    async def test_sleeps_between_pages(self, fake_client, event_spread, store, sample_partition):
        """Test the fixed delay between consecutive pages only."""
        events = event_spread(10, sample_partition.window_start, sample_partition.window_end)

        with patch("servers.event_import.fetcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await _fetcher(fake_client(events), store, delay=0.25).fetch_partition(sample_partition, 10)

        sleep.assert_awaited_once_with(0.25)
