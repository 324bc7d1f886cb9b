from portfolio_events.events.consumer import HandleOutcome, StreamConsumer, StreamMessage
from portfolio_events.events.publisher import EventPublisher, PublishResult

__all__ = [
    "EventPublisher",
    "HandleOutcome",
    "PublishResult",
    "StreamConsumer",
    "StreamMessage",
]
