"""
Error Types
===========
Not-found and transition errors raised by the store and the FSM,
plus the decode errors raised by the event codec.
"""


class PortfolioEventsError(Exception):
    """Base class for errors raised by this package."""


class ContactNotFoundError(PortfolioEventsError):
    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Contact {contact_id} not found")


class IllegalTransitionError(PortfolioEventsError):
    def __init__(self, contact_id: str, current_state, event):
        self.contact_id = contact_id
        self.current_state = current_state
        self.event = event
        super().__init__(
            f"Illegal transition for contact {contact_id}: "
            f"{current_state.value} + {event.value}"
        )


class EventDecodeError(PortfolioEventsError):
    """Payload could not be decoded into a known event."""


class MalformedEventError(EventDecodeError):
    """Payload is not valid JSON or fails schema validation."""


class UnknownEventTypeError(EventDecodeError):
    def __init__(self, event_type):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")
