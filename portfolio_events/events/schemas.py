"""
Event Schemas
=============
Wire shapes for the contact-events and visitor-events topics.
JSON, camelCase on the wire, discriminated by ``eventType``.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from portfolio_events.core.contact_states import ContactStatus, Priority
from portfolio_events.core.errors import MalformedEventError, UnknownEventTypeError


CONTACT_SUBMITTED = "CONTACT_SUBMITTED"
CONTACT_PROCESSED = "CONTACT_PROCESSED"
VISITOR_SESSION = "VISITOR_SESSION"
PAGE_VIEW = "PAGE_VIEW"

# Page values that mean the visitor left
SESSION_END_PAGES = frozenset({"exit", "close"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_id() -> str:
    return str(uuid.uuid4())


class StreamEvent(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    event_id: str = Field(default_factory=_event_id)
    timestamp: datetime = Field(default_factory=_utcnow)

    def partition_key(self) -> str:
        """Kafka record key; each concrete event overrides this."""
        raise NotImplementedError

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


# ── Contact events ────────────────────────────────────────────────────────────

class ContactSubmittedEvent(StreamEvent):
    event_type: Literal["CONTACT_SUBMITTED"] = CONTACT_SUBMITTED
    contact_id: str
    email: str
    name: str
    company: str | None = None
    message: str
    priority: Priority = Priority.MEDIUM

    def partition_key(self) -> str:
        return self.contact_id


class ContactProcessedEvent(StreamEvent):
    event_type: Literal["CONTACT_PROCESSED"] = CONTACT_PROCESSED
    contact_id: str
    status: ContactStatus
    priority: Priority | None = None
    analysis_result: str = ""

    def partition_key(self) -> str:
        return self.contact_id


# ── Visitor events ────────────────────────────────────────────────────────────

class VisitorSessionEvent(StreamEvent):
    event_type: Literal["VISITOR_SESSION"] = VISITOR_SESSION
    session_id: str
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    page: str | None = None
    referrer: str | None = None
    device_type: str | None = None

    def partition_key(self) -> str:
        return self.session_id


class PageViewEvent(StreamEvent):
    event_type: Literal["PAGE_VIEW"] = PAGE_VIEW
    session_id: str
    page: str | None = None
    previous_page: str | None = None
    time_spent_seconds: int = 0
    scroll_depth: str | None = None

    def partition_key(self) -> str:
        return self.session_id

    @property
    def is_session_end(self) -> bool:
        # Exact match: "Exit" or "CLOSE" are ordinary pages
        return self.page in SESSION_END_PAGES


CONTACT_EVENT_TYPES = {
    CONTACT_SUBMITTED: ContactSubmittedEvent,
    CONTACT_PROCESSED: ContactProcessedEvent,
}

VISITOR_EVENT_TYPES = {
    VISITOR_SESSION: VisitorSessionEvent,
    PAGE_VIEW: PageViewEvent,
}


def decode_event(raw: bytes | str | None, registry: dict[str, type[StreamEvent]]) -> StreamEvent:
    """
    Decode a raw payload using its ``eventType`` discriminator.

    Raises MalformedEventError for bad JSON or schema failures and
    UnknownEventTypeError for a discriminator not in ``registry``.
    """
    if raw is None:
        raise MalformedEventError("Empty payload")

    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedEventError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedEventError("Payload is not a JSON object")

    event_type = data.get("eventType")
    model = registry.get(event_type)
    if model is None:
        raise UnknownEventTypeError(event_type)

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid {event_type} payload: {exc}") from exc
