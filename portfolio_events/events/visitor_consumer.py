"""
Visitor Event Consumer
======================
Live visitor statistics from VISITOR_SESSION and PAGE_VIEW events.

The counters live in one LiveStatsAggregator per process. Every
mutation happens under a single lock and returns the snapshot taken
under that same lock, so each broadcast matches the update that
triggered it. Nothing is persisted; a restart starts from zero.
"""

import logging
import threading
from dataclasses import dataclass

from portfolio_events.core.errors import MalformedEventError, UnknownEventTypeError
from portfolio_events.events.consumer import HandleOutcome, StreamMessage
from portfolio_events.events.schemas import (
    VISITOR_EVENT_TYPES,
    PageViewEvent,
    VisitorSessionEvent,
    decode_event,
)
from portfolio_events.services.broadcast import LIVE_STATS_CHANNEL, BroadcastPublisher


logger = logging.getLogger(__name__)

LOCAL_LOCATION = "Local Development"


@dataclass(frozen=True)
class LiveStats:
    active_viewers: int
    countries: int
    total_views: int

    def to_payload(self) -> dict:
        return {
            "activeViewers": self.active_viewers,
            "countries": self.countries,
            "totalViews": self.total_views,
        }


def country_from_location(location: str | None) -> str:
    """
    "Amsterdam, Netherlands" -> "Netherlands"
    "Local Development"      -> "Local"
    ""                       -> "Unknown"
    """
    if not location or not location.strip():
        return "Unknown"
    if location.strip() == LOCAL_LOCATION:
        return "Local"
    country = location.split(",")[-1].strip()
    return country or "Unknown"


class LiveStatsAggregator:
    def __init__(self):
        self._lock = threading.Lock()
        self._active_sessions: set[str] = set()
        self._countries: set[str] = set()
        self._active_viewers = 0
        self._total_views = 0

    def _snapshot(self) -> LiveStats:
        return LiveStats(
            active_viewers=self._active_viewers,
            countries=len(self._countries),
            total_views=self._total_views,
        )

    def snapshot(self) -> LiveStats:
        with self._lock:
            return self._snapshot()

    def session_started(self, session_id: str, country: str) -> tuple[LiveStats, bool]:
        """Record a session start. Returns the new stats and whether the session was new."""
        with self._lock:
            self._countries.add(country)
            is_new = session_id not in self._active_sessions
            if is_new:
                self._active_sessions.add(session_id)
                self._active_viewers += 1
            self._total_views += 1
            return self._snapshot(), is_new

    def session_ended(self, session_id: str) -> LiveStats | None:
        """Record a session end. Returns None if the session was not active."""
        with self._lock:
            if session_id not in self._active_sessions:
                return None
            self._active_sessions.discard(session_id)
            self._active_viewers -= 1
            return self._snapshot()

    def reset(self) -> None:
        with self._lock:
            self._active_sessions.clear()
            self._countries.clear()
            self._active_viewers = 0
            self._total_views = 0
        logger.info("Live statistics reset")


class VisitorEventHandler:
    def __init__(self, aggregator: LiveStatsAggregator, broadcaster: BroadcastPublisher):
        self.aggregator = aggregator
        self.broadcaster = broadcaster

    async def handle(self, message: StreamMessage) -> HandleOutcome:
        extra = {"topic": message.topic, "partition": message.partition, "offset": message.offset}

        try:
            event = decode_event(message.value, VISITOR_EVENT_TYPES)
        except UnknownEventTypeError as e:
            logger.warning("Unknown event type %r, ignoring", e.event_type, extra=extra)
            return HandleOutcome.SKIPPED
        except MalformedEventError as e:
            logger.error("Malformed visitor event: %s", e, extra=extra)
            return HandleOutcome.POISON

        if isinstance(event, VisitorSessionEvent):
            self.handle_session(event)
        else:
            self.handle_page_view(event)
        return HandleOutcome.SUCCESS

    def handle_session(self, event: VisitorSessionEvent) -> LiveStats:
        country = country_from_location(event.location)
        stats, is_new = self.aggregator.session_started(event.session_id, country)

        logger.info(
            "%s session from %s, active viewers %d",
            "New" if is_new else "Existing", country, stats.active_viewers,
            extra={"session_id": event.session_id},
        )
        self._broadcast(stats)
        return stats

    def handle_page_view(self, event: PageViewEvent) -> LiveStats | None:
        if not event.is_session_end:
            return None

        stats = self.aggregator.session_ended(event.session_id)
        if stats is None:
            return None

        logger.info(
            "Session ended, active viewers %d", stats.active_viewers,
            extra={"session_id": event.session_id},
        )
        self._broadcast(stats)
        return stats

    def _broadcast(self, stats: LiveStats) -> None:
        try:
            self.broadcaster.publish(LIVE_STATS_CHANNEL, stats.to_payload())
        except Exception:
            logger.error("Failed to broadcast live stats", exc_info=True)


__all__ = [
    "LiveStats",
    "LiveStatsAggregator",
    "VisitorEventHandler",
    "country_from_location",
]
