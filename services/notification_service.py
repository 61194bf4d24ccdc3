from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import Any, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from common.models import BookingRecord, NotificationResult

logger = logging.getLogger("booking-engine")

DEFAULT_TEMPLATE = "Hi {first_name}, your appointment is booked for {when}. Reply to this number if anything changes."


def to_e164(phone: Optional[str], country_code: str = "1") -> Optional[str]:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return f"+{country_code}{digits}"
    if 11 <= len(digits) <= 15:
        return f"+{digits}"
    return None


def confirmation_text(booking: BookingRecord, template: str = DEFAULT_TEMPLATE) -> str:
    first = (booking.customer_name or "there").split()[0]
    when = (booking.selected_slot or {}).get("label") or booking.time_preference or "the requested time"
    return template.format(first_name=first, when=when, address=booking.address or "")


class TwilioNotifier:
    """
    SMS booking confirmations through Twilio.

    The Twilio REST client is synchronous, so sends run in a worker thread.
    Failures are returned as a NotificationResult, never raised.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        from_number: Optional[str] = None,
        template: str = DEFAULT_TEMPLATE,
    ):
        self.from_number = from_number or os.getenv("TWILIO_FROM_NUMBER")
        self.template = template
        self.client = client
        if self.client is None:
            sid, token = os.getenv("TWILIO_ACCOUNT_SID"), os.getenv("TWILIO_AUTH_TOKEN")
            if sid and token:
                try:
                    self.client = Client(sid, token)
                except TwilioException as e:
                    logger.warning("[SMS] Twilio client init failed: %s", e)
            else:
                logger.info("[SMS] Twilio credentials not configured; confirmations disabled")

    async def send_booking_confirmation(self, tenant_id: Optional[str], booking: BookingRecord) -> NotificationResult:
        if self.client is None or not self.from_number:
            return NotificationResult(success=False, method="sms", reason="not_configured")
        to = to_e164(booking.customer_phone)
        if to is None:
            return NotificationResult(success=False, method="sms", reason="invalid_phone")

        body = confirmation_text(booking, self.template)
        try:
            msg = await asyncio.to_thread(self.client.messages.create, body=body, from_=self.from_number, to=to)
        except (TwilioException, OSError) as e:
            logger.warning("[SMS] tenant=%s send failed: %s", tenant_id, e)
            return NotificationResult(success=False, method="sms", reason="send_failed")
        logger.info("[SMS] tenant=%s confirmation sent sid=%s", tenant_id, getattr(msg, "sid", None))
        return NotificationResult(success=True, method="sms", message_id=getattr(msg, "sid", None))
