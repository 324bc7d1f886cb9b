"""
Contact Record Store
====================
Create / read / update by id plus the status and priority queries
the submission path, the consumer and the API need.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_events.core.contact_states import ContactStatus, Priority
from portfolio_events.core.errors import ContactNotFoundError
from portfolio_events.db.models import Contact, ContactTransition, new_id, utcnow


logger = logging.getLogger(__name__)

# Fields update() copies onto the locked row
UPDATABLE_FIELDS = (
    "name",
    "email",
    "company",
    "message",
    "status",
    "priority",
    "ip_address",
    "user_agent",
    "processed_at",
)


@dataclass
class ContactPage:
    items: list[Contact]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size

    def to_dict(self) -> dict:
        return {
            "content": [contact.to_dict() for contact in self.items],
            "page": self.page,
            "size": self.size,
            "total_elements": self.total,
            "total_pages": self.total_pages,
        }


class ContactRepository:
    """Each call runs in its own session and transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, contact: Contact) -> str:
        if contact.id is None:
            contact.id = new_id()
        if contact.created_at is None:
            contact.created_at = utcnow()
        if contact.status is None:
            contact.status = ContactStatus.NEW

        async with self.session_factory() as session:
            session.add(contact)
            await session.commit()

        logger.info("Contact saved", extra={"contact_id": contact.id})
        return contact.id

    async def get(self, contact_id: str) -> Contact:
        async with self.session_factory() as session:
            contact = await session.get(Contact, contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)
        return contact

    async def update(self, contact: Contact) -> Contact:
        """Write all mutable fields in one transaction under a row lock."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Contact).where(Contact.id == contact.id).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise ContactNotFoundError(contact.id)

            for name in UPDATABLE_FIELDS:
                setattr(row, name, getattr(contact, name))
            row.updated_at = utcnow()

            await session.commit()
            return row

    async def list_by_filter(
        self,
        status: ContactStatus | None = None,
        priority: Priority | None = None,
        page: int = 0,
        size: int = 10,
    ) -> ContactPage:
        conditions = []
        if status is not None:
            conditions.append(Contact.status == status)
        if priority is not None:
            conditions.append(Contact.priority == priority)

        query = (
            select(Contact)
            .where(*conditions)
            .order_by(Contact.created_at.desc())
            .offset(page * size)
            .limit(size)
        )
        count_query = select(func.count()).select_from(Contact).where(*conditions)

        async with self.session_factory() as session:
            items = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()

        return ContactPage(items=list(items), page=page, size=size, total=total)

    async def _count(self, *conditions) -> int:
        query = select(func.count()).select_from(Contact).where(*conditions)
        async with self.session_factory() as session:
            return (await session.execute(query)).scalar_one()

    async def count(self) -> int:
        return await self._count()

    async def count_by_status(self, status: ContactStatus) -> int:
        return await self._count(Contact.status == status)

    async def count_by_priority(self, priority: Priority) -> int:
        return await self._count(Contact.priority == priority)

    async def count_by_status_and_priority(self, status: ContactStatus, priority: Priority) -> int:
        return await self._count(Contact.status == status, Contact.priority == priority)

    async def find_recent(self, since: datetime) -> list[Contact]:
        query = (
            select(Contact)
            .where(Contact.created_at >= since)
            .order_by(Contact.created_at.desc())
        )
        async with self.session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    async def find_unresponded_high_priority(self) -> list[Contact]:
        query = (
            select(Contact)
            .where(
                Contact.status != ContactStatus.RESPONDED,
                Contact.priority.in_([Priority.HIGH, Priority.URGENT]),
            )
            .order_by(Contact.created_at.desc())
        )
        async with self.session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    async def history(self, contact_id: str) -> list[ContactTransition]:
        async with self.session_factory() as session:
            if await session.get(Contact, contact_id) is None:
                raise ContactNotFoundError(contact_id)
            result = await session.execute(
                select(ContactTransition)
                .where(ContactTransition.contact_id == contact_id)
                .order_by(ContactTransition.occurred_at)
            )
            return list(result.scalars().all())
