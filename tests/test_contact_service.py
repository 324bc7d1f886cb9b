"""
Tests for the submission path and the contact queries behind the API.

Test Coverage:
    - Submission validation limits
    - classify -> persist -> publish -> respond
    - Publish failures never fail a submission
    - Queue position across priority tiers
    - Response wording and estimated response time
    - Mark responded (idempotent, terminal rejection)
    - Analytics counts
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from portfolio_events.core.contact_states import ContactStatus, Priority
from portfolio_events.core.errors import ContactNotFoundError, IllegalTransitionError
from portfolio_events.events.schemas import CONTACT_SUBMITTED
from portfolio_events.services.contact_service import (
    ContactService,
    ContactSubmission,
    format_estimate,
    next_steps_for,
)

from .conftest import RecordingPublisher


NOW = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_submission(message="Hello there, your portfolio looks great!", name="Ada Lovelace", **kwargs):
    return ContactSubmission(name=name, email="ada@example.com", message=message, **kwargs)


@pytest.fixture
def service(repository, publisher, notifier):
    return ContactService(repository, publisher, notifier, topic="contact-events", clock=lambda: NOW)


class TestContactSubmissionValidation:

    @pytest.mark.parametrize("length", [10, 2000])
    def test_message_length_limits_accepted(self, length):
        assert len(make_submission(message="x" * length).message) == length

    @pytest.mark.parametrize("length", [9, 2001])
    def test_message_length_limits_rejected(self, length):
        with pytest.raises(ValidationError):
            make_submission(message="x" * length)

    @pytest.mark.parametrize("name", ["A", "x" * 101, "   "])
    def test_bad_names_rejected(self, name):
        with pytest.raises(ValidationError):
            make_submission(name=name)

    def test_bad_email_rejected(self):
        with pytest.raises(ValidationError):
            ContactSubmission(name="Ada", email="not-an-email", message="Hello there, friend!")

    def test_company_limit(self):
        with pytest.raises(ValidationError):
            make_submission(company="c" * 101)


class TestContactServiceSubmit:

    @pytest.mark.asyncio
    async def test_submit_persists_and_publishes(self, service, repository, publisher):
        response = await service.submit(make_submission(), ip_address="10.0.0.1", user_agent="pytest")

        stored = await repository.get(response.contact_id)
        assert stored.status == ContactStatus.NEW
        assert stored.priority == Priority.MEDIUM
        assert stored.ip_address == "10.0.0.1"

        assert len(publisher.published) == 1
        topic, key, event = publisher.published[0]
        assert topic == "contact-events"
        assert key == response.contact_id
        assert event.event_type == CONTACT_SUBMITTED
        assert event.contact_id == response.contact_id
        assert event.priority == Priority.MEDIUM

    @pytest.mark.asyncio
    async def test_response_for_urgent_submission(self, service):
        response = await service.submit(make_submission(message="Urgent: we are hiring, can you call?"))

        assert response.status == "SUCCESS"
        assert response.priority == "urgent"
        assert response.response_time == "within 2-4 hours"
        assert response.message.startswith("Hi Ada!")
        assert response.event_status == "PROCESSING_STARTED"
        assert response.estimated_response == "Jan 01, 2026 at 12:00 PM"
        assert response.next_steps.startswith("I'll review your opportunity")
        assert response.queue_position == 1

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_submission(self, repository, notifier):
        service = ContactService(repository, RecordingPublisher(fail=True), notifier, topic="contact-events")

        response = await service.submit(make_submission())

        assert (await repository.get(response.contact_id)).status == ContactStatus.NEW

    @pytest.mark.asyncio
    async def test_no_submit_notification_by_default(self, service, notifier):
        await service.submit(make_submission(message="Urgent question about your availability"))

        assert notifier.urgent == []

    @pytest.mark.asyncio
    async def test_notify_on_submit(self, repository, publisher, notifier):
        service = ContactService(repository, publisher, notifier, topic="contact-events", notify_on_submit=True)

        await service.submit(make_submission(message="Urgent question about your availability"))
        await service.submit(make_submission(message="Hello there, nice website you have"))

        assert len(notifier.urgent) == 1


class TestQueuePosition:

    @pytest.mark.asyncio
    async def test_counts_only_pending_higher_tiers(self, service, make_contact):
        await make_contact(priority=Priority.URGENT)
        await make_contact(priority=Priority.URGENT)
        await make_contact(priority=Priority.HIGH)
        await make_contact(priority=Priority.URGENT, status=ContactStatus.PROCESSING)
        await make_contact(priority=Priority.MEDIUM)

        assert await service.queue_position(Priority.URGENT) == 1
        assert await service.queue_position(Priority.HIGH) == 3
        assert await service.queue_position(Priority.MEDIUM) == 4

    @pytest.mark.asyncio
    async def test_submission_reports_position(self, service, make_contact):
        await make_contact(priority=Priority.URGENT)
        await make_contact(priority=Priority.URGENT)
        await make_contact(priority=Priority.HIGH)

        response = await service.submit(make_submission())

        assert response.queue_position == 4


class TestResponseWording:

    @pytest.mark.parametrize("message, expected", [
        ("Interview for a backend job", "I'll review your opportunity"),
        ("Let's collaborate on something", "I'll assess the project requirements"),
        ("Can we set up a call?", "I'll check my calendar"),
        ("Just saying hello", "I'll review your message carefully"),
    ])
    def test_next_steps(self, message, expected):
        assert next_steps_for(message).startswith(expected)

    def test_format_estimate(self):
        assert format_estimate(datetime(2026, 12, 5, 15, 7)) == "Dec 05, 2026 at 3:07 PM"
        assert format_estimate(datetime(2026, 12, 5, 0, 30)) == "Dec 05, 2026 at 12:30 AM"


class TestMarkResponded:

    @pytest.mark.asyncio
    async def test_marks_responded(self, service, make_contact):
        contact = await make_contact()

        updated = await service.mark_responded(contact.id)

        assert updated.status == ContactStatus.RESPONDED

    @pytest.mark.asyncio
    async def test_second_call_is_a_no_op(self, service, repository, make_contact):
        contact = await make_contact()
        await service.mark_responded(contact.id)

        again = await service.mark_responded(contact.id)

        assert again.status == ContactStatus.RESPONDED
        assert len(await repository.history(contact.id)) == 1

    @pytest.mark.asyncio
    async def test_archived_is_rejected(self, service, make_contact):
        contact = await make_contact(status=ContactStatus.ARCHIVED)

        with pytest.raises(IllegalTransitionError):
            await service.mark_responded(contact.id)

    @pytest.mark.asyncio
    async def test_unknown_contact(self, service):
        with pytest.raises(ContactNotFoundError):
            await service.mark_responded("missing")


class TestAnalytics:

    @pytest.mark.asyncio
    async def test_analytics(self, service, make_contact):
        await make_contact(priority=Priority.URGENT, created_at=NOW)
        await make_contact(priority=Priority.HIGH, status=ContactStatus.RESPONDED, created_at=NOW)
        await make_contact(priority=Priority.MEDIUM, created_at=datetime(2025, 6, 1, tzinfo=timezone.utc))

        analytics = await service.analytics()

        assert analytics["total_contacts"] == 3
        assert analytics["contacts_by_status"]["NEW"] == 2
        assert analytics["contacts_by_status"]["RESPONDED"] == 1
        assert analytics["contacts_by_priority"]["URGENT"] == 1
        assert analytics["contacts_by_priority"]["LOW"] == 0
        assert analytics["recent_contacts_count"] == 2
        assert analytics["urgent_unresponded_count"] == 1
