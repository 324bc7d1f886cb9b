"""
Database-Backed Contact FSM
===========================
Every transition locks the row, appends to the transition log,
and commits. Crash-safe, and the transition table doubles as the
idempotency guard for redelivered events.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_events.core.contact_states import (
    TERMINAL_STATES,
    TRANSITIONS,
    ContactEvent,
    ContactStatus,
    Priority,
    max_priority,
)
from portfolio_events.core.errors import ContactNotFoundError, IllegalTransitionError
from portfolio_events.db.models import Contact, ContactTransition, new_id


logger = logging.getLogger(__name__)


class ContactFSM:
    """
    FSM that persists to the contact store.
    Every transition = one transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def apply_event(
        self,
        contact_id: str,
        event: ContactEvent,
        payload: dict | None = None,
        priority: Priority | None = None,
    ) -> Contact:
        """
        Apply an event to a contact and return the updated row.

        ``priority`` may only raise the stored priority; a lower value is ignored.
        """
        payload = payload or {}

        # 1. Load current contact (with row lock to prevent race conditions)
        result = await self.session.execute(
            select(Contact).where(Contact.id == contact_id).with_for_update()
        )
        contact = result.scalar_one_or_none()

        if not contact:
            await self.session.rollback()
            raise ContactNotFoundError(contact_id)

        current_state = ContactStatus(contact.status)

        # 2. Block terminal states and unknown moves
        next_state = None
        if current_state not in TERMINAL_STATES:
            next_state = TRANSITIONS.get((current_state, event))
        if next_state is None:
            await self.session.rollback()
            raise IllegalTransitionError(contact_id, current_state, event)

        now = datetime.now(timezone.utc)

        # 3. Append IMMUTABLE transition log entry
        self.session.add(ContactTransition(
            id=new_id(),
            contact_id=contact_id,
            from_status=current_state.value,
            event=event.value,
            to_status=next_state.value,
            payload=payload,
            occurred_at=now,
        ))

        # 4. Update contact's current state
        contact.status = next_state
        if current_state == ContactStatus.NEW:
            contact.processed_at = now
        if priority is not None:
            contact.priority = max_priority(Priority(contact.priority), priority)
        contact.updated_at = now

        # 5. Commit
        await self.session.commit()

        logger.info(
            "Contact %s: %s + %s -> %s",
            contact_id, current_state.value, event.value, next_state.value,
            extra={"contact_id": contact_id, "status": next_state.value},
        )
        return contact
