"""
Database Models
===============
Contact = current state + data
ContactTransition = immutable history (audit log)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship

from portfolio_events.core.contact_states import ContactStatus, Priority


def utcnow():
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Contact(Base):
    """
    The Contact table stores the CURRENT state of a submission.
    Only the FSM moves ``status``; see core/contact_fsm.py.
    """
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=new_id)

    # Submission data
    name = Column(String(100), nullable=False)
    email = Column(String(320), nullable=False)
    company = Column(String(100), nullable=True)
    message = Column(Text, nullable=False)

    # FSM state - THE SINGLE SOURCE OF TRUTH
    status = Column(
        Enum(ContactStatus, native_enum=False, length=20),
        nullable=False,
        default=ContactStatus.NEW,
    )
    priority = Column(
        Enum(Priority, native_enum=False, length=10),
        nullable=False,
        default=Priority.MEDIUM,
    )

    # Origin
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    transitions = relationship(
        "ContactTransition",
        back_populates="contact",
        order_by="ContactTransition.occurred_at",
    )

    __table_args__ = (
        Index("ix_contacts_status_priority", "status", "priority"),
        Index("ix_contacts_created_at", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "message": self.message,
            "status": self.status.value,
            "priority": self.priority.value,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class ContactTransition(Base):
    """
    The Transition Log - IMMUTABLE history.
    Every status change creates a new row here.
    Never updated or deleted - append-only.
    """
    __tablename__ = "contact_transitions"

    id = Column(String(36), primary_key=True, default=new_id)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)

    # What happened?
    from_status = Column(String(20), nullable=False)
    event = Column(String(50), nullable=False)
    to_status = Column(String(20), nullable=False)

    # Extra data (analysis summary, tags, ...)
    payload = Column(JSON, nullable=True)

    # When?
    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    contact = relationship("Contact", back_populates="transitions")

    def to_dict(self) -> dict:
        return {
            "from_status": self.from_status,
            "event": self.event,
            "to_status": self.to_status,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }
