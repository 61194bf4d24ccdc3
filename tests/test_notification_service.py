# tests/test_notification_service.py
from types import SimpleNamespace

import pytest
from twilio.base.exceptions import TwilioException

from common.models import BookingRecord
from services.notification_service import TwilioNotifier, confirmation_text, to_e164


class FakeMessages:
    def __init__(self, error=None):
        self.error = error
        self.created = []

    def create(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.created.append(kwargs)
        return SimpleNamespace(sid="SM123")


def fake_client(error=None):
    return SimpleNamespace(messages=FakeMessages(error))


@pytest.fixture
def booking():
    return BookingRecord(
        tenant_id="acme",
        flow_id="acme_booking",
        customer_name="Mark Smith",
        customer_phone="(512) 555-1234",
        address="12155 Metro Parkway, Austin, TX",
        time_preference="tomorrow morning",
        selected_slot={"label": "Tuesday, October 20 at 9 AM"},
    )


def test_to_e164():
    assert to_e164("(512) 555-1234") == "+15125551234"
    assert to_e164("+44 20 7946 0958") == "+442079460958"
    assert to_e164("555-1234") is None
    assert to_e164(None) is None


def test_confirmation_text_prefers_the_booked_slot(booking):
    assert confirmation_text(booking) == (
        "Hi Mark, your appointment is booked for Tuesday, October 20 at 9 AM. "
        "Reply to this number if anything changes."
    )
    booking.selected_slot = None
    assert "tomorrow morning" in confirmation_text(booking, "{first_name}: {when} at {address}")


@pytest.mark.asyncio
async def test_sends_through_the_client(booking):
    client = fake_client()
    notifier = TwilioNotifier(client, from_number="+15125550000")

    result = await notifier.send_booking_confirmation("acme", booking)

    assert result.success
    assert result.message_id == "SM123"
    sent = client.messages.created[0]
    assert sent["to"] == "+15125551234"
    assert sent["from_"] == "+15125550000"
    assert sent["body"].startswith("Hi Mark,")


@pytest.mark.asyncio
async def test_unconfigured_notifier_does_nothing(monkeypatch, booking):
    for var in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER"):
        monkeypatch.delenv(var, raising=False)

    result = await TwilioNotifier().send_booking_confirmation("acme", booking)
    assert not result.success
    assert result.reason == "not_configured"


@pytest.mark.asyncio
async def test_invalid_phone_and_send_failure(booking):
    failing = TwilioNotifier(fake_client(TwilioException("21211 invalid 'To'")), from_number="+15125550000")
    assert (await failing.send_booking_confirmation("acme", booking)).reason == "send_failed"

    booking.customer_phone = "555-1234"
    ok_client = fake_client()
    result = await TwilioNotifier(ok_client, from_number="+15125550000").send_booking_confirmation("acme", booking)
    assert result.reason == "invalid_phone"
    assert ok_client.messages.created == []
