"""
Contact Event Consumer
======================
NEW -> PROCESSING -> ANALYZED for each CONTACT_SUBMITTED event,
then notification and a CONTACT_PROCESSED event.

Delivery is at-least-once. The FSM only allows START_PROCESSING from
NEW, so a redelivered submission is rejected under the row lock and
produces no side effects.
"""

import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_events.core.classifier import analyze_message
from portfolio_events.core.contact_fsm import ContactFSM
from portfolio_events.core.contact_states import ELEVATED_PRIORITIES, ContactEvent, Priority
from portfolio_events.core.errors import (
    ContactNotFoundError,
    IllegalTransitionError,
    MalformedEventError,
    UnknownEventTypeError,
)
from portfolio_events.db.models import Contact
from portfolio_events.events.consumer import HandleOutcome, StreamMessage
from portfolio_events.events.schemas import (
    CONTACT_EVENT_TYPES,
    ContactProcessedEvent,
    ContactSubmittedEvent,
    decode_event,
)
from portfolio_events.services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)


class ContactEventHandler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher,
        notifier: NotificationDispatcher,
        topic: str,
        notify: bool = True,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.notifier = notifier
        self.topic = topic
        # False when the submission path owns the urgent notification
        self.notify = notify

    async def handle(self, message: StreamMessage) -> HandleOutcome:
        extra = {"topic": message.topic, "partition": message.partition, "offset": message.offset}

        try:
            event = decode_event(message.value, CONTACT_EVENT_TYPES)
        except UnknownEventTypeError as e:
            logger.warning("Unknown event type %r, ignoring", e.event_type, extra=extra)
            return HandleOutcome.SKIPPED
        except MalformedEventError as e:
            logger.error("Malformed contact event: %s", e, extra=extra)
            return HandleOutcome.POISON

        if isinstance(event, ContactProcessedEvent):
            logger.info(
                "Contact %s was processed with status %s",
                event.contact_id, event.status.value,
                extra={**extra, "contact_id": event.contact_id},
            )
            return HandleOutcome.SUCCESS

        return await self.handle_submitted(event)

    async def handle_submitted(self, event: ContactSubmittedEvent) -> HandleOutcome:
        contact_id = event.contact_id
        extra = {"contact_id": contact_id, "event_id": event.event_id}
        logger.info("Processing ContactSubmittedEvent", extra=extra)
        started = False

        try:
            async with self.session_factory() as session:
                fsm = ContactFSM(session)

                try:
                    contact = await fsm.apply_event(contact_id, ContactEvent.START_PROCESSING)
                except IllegalTransitionError as e:
                    logger.warning(
                        "Contact already processed (status %s), skipping",
                        e.current_state.value,
                        extra=extra,
                    )
                    return HandleOutcome.SKIPPED
                started = True

                analysis = analyze_message(contact.message, Priority(contact.priority))
                contact = await fsm.apply_event(
                    contact_id,
                    ContactEvent.ANALYSIS_COMPLETE,
                    payload={"summary": analysis.summary, "tags": analysis.tags},
                    priority=analysis.priority,
                )
                logger.info(analysis.summary, extra={**extra, "priority": contact.priority.value})

            await self._notify(contact)
            await self._publish_processed(contact, analysis.summary)
            return HandleOutcome.SUCCESS

        except ContactNotFoundError:
            logger.error("Contact not found, dropping event", extra=extra)
            return HandleOutcome.POISON
        except TRANSIENT_DB_ERRORS:
            if started:
                # PROCESSING is committed, so a redelivery would be skipped by the guard
                logger.error(
                    "Database error after processing started, dead-lettering",
                    extra=extra,
                    exc_info=True,
                )
                return HandleOutcome.POISON
            logger.error("Transient database error processing contact", extra=extra, exc_info=True)
            return HandleOutcome.RETRY
        except Exception:
            logger.error("Failed to process contact event", extra=extra, exc_info=True)
            return HandleOutcome.POISON

    async def _notify(self, contact: Contact) -> None:
        if not self.notify:
            return
        try:
            if contact.priority in ELEVATED_PRIORITIES:
                await self.notifier.notify_urgent(contact.email, contact.name, contact.message)
            else:
                await self.notifier.notify_standard(contact)
        except Exception:
            # Best effort: the transition is already committed
            logger.error(
                "Failed to send notification",
                extra={"contact_id": contact.id},
                exc_info=True,
            )

    async def _publish_processed(self, contact: Contact, summary: str) -> None:
        event = ContactProcessedEvent(
            contact_id=contact.id,
            status=contact.status,
            priority=contact.priority,
            analysis_result=summary,
        )
        try:
            await self.publisher.publish(self.topic, event.partition_key(), event)
        except Exception:
            logger.error(
                "Failed to publish ContactProcessedEvent",
                extra={"contact_id": contact.id},
                exc_info=True,
            )
