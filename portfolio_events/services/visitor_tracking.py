"""
Visitor Tracking
================
Turns browser pings into VISITOR_SESSION / PAGE_VIEW events keyed by
session id, so one session's events stay on one partition.
"""

import logging
import zlib
from typing import Protocol

from portfolio_events.events.schemas import PageViewEvent, VisitorSessionEvent


logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "PORTFOLIO_SESSION_ID"

LOOPBACK_ADDRESSES = {"127.0.0.1", "::1", "0:0:0:0:0:0:0:1", "localhost"}


class LocationResolver(Protocol):
    def resolve(self, ip_address: str | None) -> str:
        ...


class StaticLocationResolver:
    """
    Stand-in for a real geo-IP lookup: loopback maps to "Local Development",
    anything else lands deterministically on one of ``locations``.
    """

    DEFAULT_LOCATIONS = (
        "Amsterdam, Netherlands",
        "Rotterdam, Netherlands",
        "Utrecht, Netherlands",
        "Eindhoven, Netherlands",
        "Den Haag, Netherlands",
    )

    def __init__(self, locations: tuple[str, ...] = DEFAULT_LOCATIONS):
        self.locations = locations

    def resolve(self, ip_address: str | None) -> str:
        if not ip_address or ip_address in LOOPBACK_ADDRESSES:
            return "Local Development"
        index = zlib.crc32(ip_address.encode("utf-8")) % len(self.locations)
        return self.locations[index]


def detect_device_type(user_agent: str | None) -> str:
    if not user_agent:
        return "Unknown"
    ua = user_agent.lower()
    if any(marker in ua for marker in ("mobile", "android", "iphone")):
        return "Mobile"
    if any(marker in ua for marker in ("tablet", "ipad")):
        return "Tablet"
    return "Desktop"


def client_ip(headers, peer: str | None) -> str | None:
    """X-Forwarded-For (first hop), then X-Real-IP, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


class VisitorTrackingService:
    def __init__(self, publisher, topic: str, locations: LocationResolver):
        self.publisher = publisher
        self.topic = topic
        self.locations = locations

    async def track_session(
        self,
        session_id: str,
        ip_address: str | None,
        user_agent: str | None,
        page: str | None = None,
        referrer: str | None = None,
    ) -> VisitorSessionEvent:
        event = VisitorSessionEvent(
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            location=self.locations.resolve(ip_address),
            page=page or "home",
            referrer=referrer,
            device_type=detect_device_type(user_agent),
        )
        await self.publisher.publish(self.topic, event.partition_key(), event)
        logger.info("Visitor session tracked from %s", event.location, extra={"session_id": session_id})
        return event

    async def track_page_view(
        self,
        session_id: str,
        page: str | None,
        previous_page: str | None = None,
        time_spent_seconds: int = 0,
        scroll_depth: str | None = None,
    ) -> PageViewEvent:
        event = PageViewEvent(
            session_id=session_id,
            page=page,
            previous_page=previous_page,
            time_spent_seconds=time_spent_seconds,
            scroll_depth=scroll_depth,
        )
        await self.publisher.publish(self.topic, event.partition_key(), event)
        logger.info(
            "Page view tracked: %s -> %s (%ss)", previous_page, page, time_spent_seconds,
            extra={"session_id": session_id},
        )
        return event
