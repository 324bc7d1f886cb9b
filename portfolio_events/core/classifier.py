"""
Priority Classification
=======================
Keyword scans over the free-text message.

classify_priority() runs at submission time.
analyze_message() runs in the consumer and may only escalate.
"""

from dataclasses import dataclass, field

from portfolio_events.core.contact_states import Priority, max_priority


# First matching tier wins
PRIORITY_KEYWORDS = [
    (Priority.URGENT, ("urgent", "asap", "immediately", "hiring", "job opportunity")),
    (Priority.HIGH, ("interested", "project", "collaborate", "interview")),
]

JOB_KEYWORDS = ("job", "hiring", "opportunity", "position")
URGENT_KEYWORDS = ("urgent", "asap", "immediately")
TECHNICAL_KEYWORDS = ("java", "spring", "kafka", "microservices")


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def classify_priority(message: str) -> Priority:
    """Submission-time tier. Never returns LOW."""
    text = (message or "").lower()
    for priority, keywords in PRIORITY_KEYWORDS:
        if _contains_any(text, keywords):
            return priority
    return Priority.MEDIUM


@dataclass
class AnalysisResult:
    priority: Priority
    tags: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        parts = ["Analysis complete:"]
        if "JOB_INQUIRY" in self.tags:
            parts.append("JOB_INQUIRY detected.")
        if "URGENT" in self.tags:
            parts.append("URGENT request.")
        if "TECHNICAL" in self.tags:
            parts.append("TECHNICAL discussion.")
        return " ".join(parts)


def analyze_message(message: str, current: Priority) -> AnalysisResult:
    """Richer scan used during analysis. The result is never below ``current``."""
    text = (message or "").lower()
    priority = current
    tags = []

    if _contains_any(text, JOB_KEYWORDS):
        tags.append("JOB_INQUIRY")
        priority = max_priority(priority, Priority.HIGH)

    if _contains_any(text, URGENT_KEYWORDS):
        tags.append("URGENT")
        priority = Priority.URGENT

    # Recorded only, no effect on priority
    if _contains_any(text, TECHNICAL_KEYWORDS):
        tags.append("TECHNICAL")

    return AnalysisResult(priority=priority, tags=tags)
