from portfolio_events.core.contact_states import (
    ContactEvent,
    ContactStatus,
    Priority,
    TRANSITIONS,
)
from portfolio_events.core.errors import ContactNotFoundError, IllegalTransitionError

__all__ = [
    "ContactEvent",
    "ContactStatus",
    "Priority",
    "TRANSITIONS",
    "ContactNotFoundError",
    "IllegalTransitionError",
]
