"""
Contact Lifecycle States
Every contact is in exactly ONE of these states at any time
"""

from enum import Enum


class ContactStatus(str, Enum):
    NEW = "NEW"                    # Just submitted
    PROCESSING = "PROCESSING"      # Picked up by the contact-event consumer
    ANALYZED = "ANALYZED"          # Keyword analysis done
    RESPONDED = "RESPONDED"        # Answered by a human
    ARCHIVED = "ARCHIVED"          # Filed away (terminal)


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]

    def outranks(self, other: "Priority") -> bool:
        return self.rank > other.rank

    def higher_tiers(self) -> list["Priority"]:
        """Tiers strictly above this one, most urgent first."""
        return [p for p in PRIORITIES_BY_URGENCY if p.outranks(self)]


class ContactEvent(str, Enum):
    START_PROCESSING = "START_PROCESSING"
    ANALYSIS_COMPLETE = "ANALYSIS_COMPLETE"
    MARK_RESPONDED = "MARK_RESPONDED"


PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}

PRIORITIES_BY_URGENCY = sorted(Priority, key=lambda p: PRIORITY_RANK[p], reverse=True)

# Priorities that take the urgent notification path
ELEVATED_PRIORITIES = {Priority.HIGH, Priority.URGENT}

TERMINAL_STATES = {
    ContactStatus.ARCHIVED,
}

TRANSITIONS = {
    # Contact-event consumer
    (ContactStatus.NEW, ContactEvent.START_PROCESSING): ContactStatus.PROCESSING,
    (ContactStatus.PROCESSING, ContactEvent.ANALYSIS_COMPLETE): ContactStatus.ANALYZED,

    # Explicit "mark responded" action
    (ContactStatus.NEW, ContactEvent.MARK_RESPONDED): ContactStatus.RESPONDED,
    (ContactStatus.PROCESSING, ContactEvent.MARK_RESPONDED): ContactStatus.RESPONDED,
    (ContactStatus.ANALYZED, ContactEvent.MARK_RESPONDED): ContactStatus.RESPONDED,
}


def max_priority(*priorities: Priority) -> Priority:
    return max(priorities, key=lambda p: PRIORITY_RANK[p])
