"""
Contact Service
===============
Submission: classify -> persist -> publish -> respond.
Plus the query and "mark responded" operations behind the API.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import BaseModel, EmailStr, Field, field_validator

from portfolio_events.core.classifier import classify_priority
from portfolio_events.core.contact_fsm import ContactFSM
from portfolio_events.core.contact_states import (
    ELEVATED_PRIORITIES,
    ContactEvent,
    ContactStatus,
    Priority,
)
from portfolio_events.core.errors import IllegalTransitionError
from portfolio_events.db.models import Contact, ContactTransition
from portfolio_events.db.repository import ContactPage, ContactRepository
from portfolio_events.events.schemas import ContactSubmittedEvent
from portfolio_events.services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)


# ── Request / Response ────────────────────────────────────────────────────────

class ContactSubmission(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    company: str | None = Field(default=None, max_length=100)
    message: str = Field(min_length=10, max_length=2000)

    @field_validator("name", "message")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ContactResponse(BaseModel):
    contact_id: str
    status: str
    message: str
    response_time: str
    priority: str
    next_steps: str
    estimated_response: str
    event_status: str
    queue_position: int


# ── Response wording ──────────────────────────────────────────────────────────

RESPONSE_TIMES = {
    Priority.URGENT: "within 2-4 hours",
    Priority.HIGH: "within 8 hours",
    Priority.MEDIUM: "within 24 hours",
    Priority.LOW: "within 48 hours",
}

RESPONSE_OFFSETS = {
    Priority.URGENT: timedelta(hours=3),
    Priority.HIGH: timedelta(hours=8),
    Priority.MEDIUM: timedelta(days=1),
    Priority.LOW: timedelta(days=2),
}

GREETINGS = {
    Priority.URGENT: "Hi {name}! Thanks for your urgent message. I'm prioritizing this and will respond very soon.",
    Priority.HIGH: "Hi {name}! Thanks for reaching out. Your message caught my attention and I'll respond quickly.",
    Priority.MEDIUM: "Hi {name}! Thanks for your message. I've received it and will get back to you soon.",
    Priority.LOW: "Hi {name}! Thanks for reaching out. I've received your message and will respond when I can.",
}

# First match wins
NEXT_STEPS = [
    (("hiring", "job", "interview"),
     "I'll review your opportunity and send you my latest CV along with my response."),
    (("project", "collaborate"),
     "I'll assess the project requirements and get back to you with my availability and approach."),
    (("meeting", "call"),
     "I'll check my calendar and propose some meeting times that work for both of us."),
]
DEFAULT_NEXT_STEPS = "I'll review your message carefully and provide a detailed response."


def next_steps_for(message: str) -> str:
    text = message.lower()
    for keywords, steps in NEXT_STEPS:
        if any(keyword in text for keyword in keywords):
            return steps
    return DEFAULT_NEXT_STEPS


def format_estimate(moment: datetime) -> str:
    """Dec 05, 2026 at 3:07 PM"""
    hour = moment.hour % 12 or 12
    return f"{moment:%b %d, %Y} at {hour}:{moment:%M %p}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Service ───────────────────────────────────────────────────────────────────

class ContactService:
    def __init__(
        self,
        repository: ContactRepository,
        publisher,
        notifier: NotificationDispatcher,
        topic: str,
        notify_on_submit: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.publisher = publisher
        self.notifier = notifier
        self.topic = topic
        self.notify_on_submit = notify_on_submit
        self.clock = clock

    async def submit(
        self,
        submission: ContactSubmission,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ContactResponse:
        """
        Process a single contact form submission.

        The contact is committed before anything is published; a store
        failure propagates to the caller, a publish failure does not.
        """
        logger.info("Processing new contact")

        # 1. Classify
        priority = classify_priority(submission.message)

        # 2. Persist
        contact = Contact(
            name=submission.name,
            email=str(submission.email),
            company=submission.company,
            message=submission.message,
            status=ContactStatus.NEW,
            priority=priority,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=self.clock(),
        )
        await self.repository.create(contact)

        # 3. Publish (best effort)
        await self._publish_submitted(contact)

        # 4. Immediate urgent notification, only when the consumer doesn't own it
        if self.notify_on_submit and priority in ELEVATED_PRIORITIES:
            try:
                await self.notifier.notify_urgent(contact.email, contact.name, contact.message)
            except Exception:
                logger.error(
                    "Failed to send urgent notification",
                    extra={"contact_id": contact.id},
                    exc_info=True,
                )

        # 5. Respond
        return await self.build_response(contact)

    async def _publish_submitted(self, contact: Contact) -> None:
        event = ContactSubmittedEvent(
            contact_id=contact.id,
            email=contact.email,
            name=contact.name,
            company=contact.company,
            message=contact.message,
            priority=contact.priority,
        )
        try:
            await self.publisher.publish(self.topic, event.partition_key(), event)
        except Exception:
            logger.error(
                "Failed to publish ContactSubmittedEvent",
                extra={"contact_id": contact.id},
                exc_info=True,
            )

    async def build_response(self, contact: Contact) -> ContactResponse:
        priority = Priority(contact.priority)
        first_name = contact.name.split()[0] if contact.name and contact.name.strip() else "there"

        return ContactResponse(
            contact_id=contact.id,
            status="SUCCESS",
            message=GREETINGS[priority].format(name=first_name),
            response_time=RESPONSE_TIMES[priority],
            priority=priority.value.lower(),
            next_steps=next_steps_for(contact.message),
            estimated_response=format_estimate(self.clock() + RESPONSE_OFFSETS[priority]),
            event_status="PROCESSING_STARTED",
            queue_position=await self.queue_position(priority),
        )

    async def queue_position(self, priority: Priority) -> int:
        """Pending NEW contacts in strictly higher tiers, plus one."""
        ahead = 0
        for tier in priority.higher_tiers():
            ahead += await self.repository.count_by_status_and_priority(ContactStatus.NEW, tier)
        return ahead + 1

    # ── Queries ───────────────────────────────────────────────────────────────

    async def get_contact(self, contact_id: str) -> Contact:
        return await self.repository.get(contact_id)

    async def list_contacts(
        self,
        status: ContactStatus | None = None,
        priority: Priority | None = None,
        page: int = 0,
        size: int = 10,
    ) -> ContactPage:
        return await self.repository.list_by_filter(status, priority, page, size)

    async def history(self, contact_id: str) -> list[ContactTransition]:
        return await self.repository.history(contact_id)

    async def analytics(self) -> dict:
        since = self.clock() - timedelta(days=7)
        return {
            "total_contacts": await self.repository.count(),
            "contacts_by_status": {
                status.value: await self.repository.count_by_status(status)
                for status in ContactStatus
            },
            "contacts_by_priority": {
                priority.value: await self.repository.count_by_priority(priority)
                for priority in Priority
            },
            "recent_contacts_count": len(await self.repository.find_recent(since)),
            "urgent_unresponded_count": len(await self.repository.find_unresponded_high_priority()),
        }

    async def mark_responded(self, contact_id: str) -> Contact:
        """Move a contact to RESPONDED. Already-responded contacts are left as they are."""
        async with self.repository.session_factory() as session:
            try:
                return await ContactFSM(session).apply_event(contact_id, ContactEvent.MARK_RESPONDED)
            except IllegalTransitionError as e:
                if e.current_state != ContactStatus.RESPONDED:
                    raise
        logger.info("Contact already responded", extra={"contact_id": contact_id})
        return await self.repository.get(contact_id)
