"""
Tests for live visitor statistics.

Test Coverage:
    - Country extraction from location strings
    - Active-viewer accounting (new vs. repeat sessions, exits)
    - Concurrent updates keep counters consistent
    - Broadcast on every accepted update
    - Outcome mapping for bad payloads
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from portfolio_events.events.consumer import HandleOutcome
from portfolio_events.events.schemas import PageViewEvent, VisitorSessionEvent
from portfolio_events.events.visitor_consumer import (
    LiveStats,
    LiveStatsAggregator,
    VisitorEventHandler,
    country_from_location,
)
from portfolio_events.services.broadcast import LIVE_STATS_CHANNEL

from .conftest import make_message


def session_event(session_id="s-1", location="Amsterdam, Netherlands"):
    return VisitorSessionEvent(session_id=session_id, location=location, page="home")


@pytest.fixture
def aggregator():
    return LiveStatsAggregator()


@pytest.fixture
def handler(aggregator, broadcaster):
    return VisitorEventHandler(aggregator, broadcaster)


class TestCountryFromLocation:

    @pytest.mark.parametrize("location, expected", [
        ("Amsterdam, Netherlands", "Netherlands"),
        ("Berlin,Germany", "Germany"),
        ("Local Development", "Local"),
        ("Iceland", "Iceland"),
        ("", "Unknown"),
        (None, "Unknown"),
        ("Nowhere, ", "Unknown"),
    ])
    def test_country(self, location, expected):
        assert country_from_location(location) == expected


class TestLiveStatsAggregator:

    def test_repeat_session_counts_a_view_but_not_a_viewer(self, aggregator):
        aggregator.session_started("s-1", "Netherlands")
        stats, is_new = aggregator.session_started("s-1", "Netherlands")

        assert is_new is False
        assert stats == LiveStats(active_viewers=1, countries=1, total_views=2)

    def test_countries_are_distinct(self, aggregator):
        aggregator.session_started("s-1", "Netherlands")
        aggregator.session_started("s-2", "Netherlands")
        stats, _ = aggregator.session_started("s-3", "Germany")

        assert stats.countries == 2
        assert stats.active_viewers == 3

    def test_session_end(self, aggregator):
        aggregator.session_started("s-1", "Netherlands")

        stats = aggregator.session_ended("s-1")

        assert stats.active_viewers == 0
        assert stats.total_views == 1
        assert aggregator.session_ended("s-1") is None

    def test_unknown_session_end_is_ignored(self, aggregator):
        assert aggregator.session_ended("never-seen") is None
        assert aggregator.snapshot().active_viewers == 0

    def test_reset(self, aggregator):
        aggregator.session_started("s-1", "Netherlands")
        aggregator.reset()

        assert aggregator.snapshot() == LiveStats(active_viewers=0, countries=0, total_views=0)

    def test_concurrent_updates(self, aggregator):
        def visit(worker):
            for i in range(200):
                aggregator.session_started(f"w{worker}-{i}", f"country-{i % 7}")
            for i in range(0, 200, 2):
                aggregator.session_ended(f"w{worker}-{i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(visit, range(8)))

        assert aggregator.snapshot() == LiveStats(active_viewers=800, countries=7, total_views=1600)

    def test_payload_keys(self):
        assert LiveStats(1, 2, 3).to_payload() == {"activeViewers": 1, "countries": 2, "totalViews": 3}


class TestVisitorEventHandler:

    @pytest.mark.asyncio
    async def test_session_event_broadcasts(self, handler, broadcaster):
        outcome = await handler.handle(make_message(session_event(), topic="visitor-events"))

        assert outcome == HandleOutcome.SUCCESS
        assert broadcaster.published == [
            (LIVE_STATS_CHANNEL, {"activeViewers": 1, "countries": 1, "totalViews": 1}),
        ]

    @pytest.mark.asyncio
    async def test_cities_in_one_country_count_once(self, handler, aggregator):
        await handler.handle(make_message(session_event("s-1", "Amsterdam, Netherlands"), topic="visitor-events"))
        await handler.handle(make_message(session_event("s-2", "Rotterdam, Netherlands"), topic="visitor-events"))

        assert aggregator.snapshot().countries == 1

    @pytest.mark.asyncio
    async def test_duplicate_session_and_double_exit(self, handler, aggregator):
        await handler.handle(make_message(session_event("s-1"), topic="visitor-events"))
        await handler.handle(make_message(session_event("s-1"), topic="visitor-events"))
        assert aggregator.snapshot().active_viewers == 1

        exit_view = PageViewEvent(session_id="s-1", page="exit")
        await handler.handle(make_message(exit_view, topic="visitor-events"))
        await handler.handle(make_message(exit_view, topic="visitor-events"))

        assert aggregator.snapshot().active_viewers == 0

    @pytest.mark.asyncio
    async def test_exit_page_view_ends_session(self, handler, broadcaster, aggregator):
        await handler.handle(make_message(session_event(), topic="visitor-events"))

        await handler.handle(make_message(PageViewEvent(session_id="s-1", page="exit"), topic="visitor-events"))

        assert aggregator.snapshot().active_viewers == 0
        assert broadcaster.published[-1] == (
            LIVE_STATS_CHANNEL, {"activeViewers": 0, "countries": 1, "totalViews": 1},
        )

    @pytest.mark.asyncio
    async def test_ordinary_page_view_is_silent(self, handler, broadcaster):
        await handler.handle(make_message(session_event(), topic="visitor-events"))
        broadcaster.published.clear()

        event = PageViewEvent(session_id="s-1", page="projects", previous_page="home", time_spent_seconds=12)
        outcome = await handler.handle(make_message(event, topic="visitor-events"))

        assert outcome == HandleOutcome.SUCCESS
        assert broadcaster.published == []

    @pytest.mark.asyncio
    async def test_exit_for_unknown_session_is_silent(self, handler, broadcaster):
        await handler.handle(make_message(PageViewEvent(session_id="ghost", page="close"), topic="visitor-events"))

        assert broadcaster.published == []

    @pytest.mark.asyncio
    async def test_unknown_type_is_skipped(self, handler):
        message = make_message(b'{"eventType": "CLICK", "sessionId": "s-1"}', topic="visitor-events", key="s-1")

        assert await handler.handle(message) == HandleOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_malformed_is_poison(self, handler):
        message = make_message(b'{"eventType": "VISITOR_SESSION"}', topic="visitor-events", key="s-1")

        assert await handler.handle(message) == HandleOutcome.POISON

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_fail_handling(self, aggregator):
        class FailingBroadcaster:
            def publish(self, channel, payload):
                raise RuntimeError("no subscribers reachable")

        handler = VisitorEventHandler(aggregator, FailingBroadcaster())

        outcome = await handler.handle(make_message(session_event(), topic="visitor-events"))

        assert outcome == HandleOutcome.SUCCESS
        assert aggregator.snapshot().active_viewers == 1
