from portfolio_events.services.broadcast import LIVE_STATS_CHANNEL, InMemoryBroadcaster
from portfolio_events.services.contact_service import ContactResponse, ContactService, ContactSubmission
from portfolio_events.services.notifications import LoggingNotificationDispatcher
from portfolio_events.services.visitor_tracking import StaticLocationResolver, VisitorTrackingService

__all__ = [
    "LIVE_STATS_CHANNEL",
    "ContactResponse",
    "ContactService",
    "ContactSubmission",
    "InMemoryBroadcaster",
    "LoggingNotificationDispatcher",
    "StaticLocationResolver",
    "VisitorTrackingService",
]
