"""
Notification Dispatch
=====================
Outbound email is handled elsewhere; this module only defines the
contract and a dispatcher that records requests in the log.
"""

import logging
from typing import Protocol

from portfolio_events.db.models import Contact


logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def notify_urgent(self, email: str, name: str, message: str) -> None:
        ...

    async def notify_standard(self, contact: Contact) -> None:
        ...


class LoggingNotificationDispatcher:
    """Writes each notification request to the log instead of sending it."""

    async def notify_urgent(self, email: str, name: str, message: str) -> None:
        logger.warning(
            "URGENT contact from %s <%s>: %s", name, email, message[:200],
        )

    async def notify_standard(self, contact: Contact) -> None:
        logger.info(
            "New contact from %s <%s>", contact.name, contact.email,
            extra={"contact_id": contact.id, "priority": contact.priority.value},
        )
