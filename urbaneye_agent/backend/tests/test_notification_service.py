import asyncio
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioException

from models.complaint_models import Complaint, Department, Priority, StaffMember
from services.notification_service import NotificationService


@pytest.fixture()
def complaint():
    return Complaint(complaint_id="C-1", title="Burst pipe", description="water everywhere",
                     priority=Priority.URGENT)


@pytest.fixture()
def staff():
    return StaffMember(staff_id="W-1", name="Ana Lima", email="ana@example.com", phone="+15550001111",
                       department=Department.WATER_SUPPLY)


@pytest.fixture()
def notifier(monkeypatch):
    for name in ("SMTP_USERNAME", "SMTP_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15559990000")
    return NotificationService(twilio_client=MagicMock())


def test_sms_sent_when_twilio_configured(notifier, complaint, staff):
    outcome = asyncio.run(notifier.notify_assignment(complaint, staff))

    assert outcome.sms_sent is True
    assert outcome.email_sent is False
    notifier.twilio_client.messages.create.assert_called_once_with(
        body=NotificationService.build_sms_body(complaint),
        from_="+15559990000",
        to="+15550001111",
    )


def test_sms_failure_is_collected(notifier, complaint, staff):
    notifier.twilio_client.messages.create.side_effect = TwilioException("invalid number")

    outcome = asyncio.run(notifier.notify_assignment(complaint, staff))

    assert outcome.delivered is False
    assert outcome.errors == ["sms: invalid number"]


def test_assignment_email_renders_complaint(notifier, complaint, staff):
    html = notifier.render_assignment_email(complaint, staff)

    assert "C-1" in html
    assert "Ana Lima" in html
    assert "Urgent" in html
